"""Re-derive generation input for an existing document."""

from study_assistant import models
from study_assistant.errors import ValidationError
from study_assistant.repositories import artifacts_repo
from study_assistant.services import file_service
from study_assistant.services.generation_service import GenerationSource


def load_text_source(db, blob_store, document, max_chars):
    """Return a text ``GenerationSource`` for ``document``.

    YouTube documents have no stored binary; their saved notes stand in for
    the video. PDF/DOCX documents are re-extracted from the blob store.
    """
    document_id = document.get('document_id') or document.get('id', '')
    if document.get('file_type') == models.FILE_TYPE_YOUTUBE:
        notes = artifacts_repo.get_notes(db, document_id) or {}
        content = str(notes.get('content', '') or '')
        if not content.strip():
            raise ValidationError(
                'Notes not found for this YouTube video. Please wait for processing to complete.',
                error_code='NOTES_NOT_READY',
            )
        text, _truncated = file_service.truncate_source_text(content, max_chars)
        return GenerationSource(text=text)

    blob_key = document.get('blob_key', '')
    if not blob_key:
        raise ValidationError('Document file not found', error_code='BLOB_MISSING')
    data = blob_store.get(blob_key)
    text, _truncated = file_service.prepare_source_text(data, document.get('file_type', ''), max_chars)
    return GenerationSource(text=text)
