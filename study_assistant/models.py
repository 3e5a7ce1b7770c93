"""Document and artifact record shapes stored in Firestore."""

STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

FILE_TYPE_YOUTUBE = 'youtube'


def build_document_record(document_id, uid, *, file_name, file_type, now_ts, job_id='', **extra):
    """Return the canonical document structure in the ``processing`` state."""
    record = {
        'document_id': document_id,
        'uid': uid,
        'file_name': file_name,
        'original_name': extra.pop('original_name', file_name),
        'file_type': file_type,
        'file_size': int(extra.pop('file_size', 0) or 0),
        'blob_key': extra.pop('blob_key', ''),
        'youtube_url': extra.pop('youtube_url', ''),
        'youtube_video_id': extra.pop('youtube_video_id', ''),
        'youtube_thumbnail': extra.pop('youtube_thumbnail', ''),
        'video_duration': extra.pop('video_duration', None),
        'folder_id': extra.pop('folder_id', ''),
        'status': STATUS_PROCESSING,
        'job_id': job_id,
        'generation_summary': [],
        'uploaded_at': now_ts,
        'created_at': now_ts,
        'updated_at': now_ts,
    }
    record.update(extra)
    return record


def serialize_document(doc):
    return {
        'id': doc.get('document_id') or doc.get('id', ''),
        'file_name': doc.get('file_name', ''),
        'file_type': doc.get('file_type', ''),
        'file_size': doc.get('file_size', 0),
        'status': doc.get('status', STATUS_PROCESSING),
        'uploaded_at': doc.get('uploaded_at'),
        'updated_at': doc.get('updated_at'),
        'youtube_url': doc.get('youtube_url') or None,
        'youtube_thumbnail': doc.get('youtube_thumbnail') or None,
        'generation_summary': doc.get('generation_summary', []),
    }


def serialize_flashcard(card):
    return {
        'id': card.get('id', ''),
        'question': card.get('question', ''),
        'answer': card.get('answer', ''),
        'is_known': card.get('is_known'),
    }


def serialize_quiz_question(question):
    return {
        'id': question.get('id', ''),
        'question': question.get('question', ''),
        'options': list(question.get('options', [])),
        'correct_answer': question.get('correct_answer'),
        'explanation': question.get('explanation') or None,
    }
