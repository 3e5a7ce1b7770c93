"""Business logic handlers for document upload, status and artifact APIs."""

import asyncio
import logging

from flask import jsonify, send_file

from study_assistant import models
from study_assistant.errors import StudyAssistantError, TextExtractionError
from study_assistant.logging_config import log_event
from study_assistant.repositories import artifacts_repo, documents_repo
from study_assistant.services import file_service, notes_export_service, source_service
from study_assistant.services.generation_service import GenerationSource
from study_assistant.services.rate_limit_service import build_rate_limited_response, normalize_rate_limit_key_part

MAX_FILE_NAME_LEN = 255


def error_response(exc):
    return jsonify(exc.to_dict()), exc.status_code


def load_owned_document(app_ctx, document_id, uid):
    """Return the document dict when it exists and belongs to ``uid``."""
    safe_id = str(document_id or '').strip()
    if not safe_id or safe_id == 'undefined':
        return None
    snapshot = documents_repo.get_doc(app_ctx.db, safe_id)
    if not snapshot.exists:
        return None
    document = snapshot.to_dict() or {}
    if document.get('uid') != uid:
        return None
    document.setdefault('document_id', safe_id)
    return document


def active_jobs_response(app_ctx, uid):
    """Return a 429 response when ``uid`` is at the concurrent job cap, else ``None``."""
    active_jobs = app_ctx.jobs.count_active_for_user(uid)
    if active_jobs < app_ctx.config.max_active_jobs_per_user:
        return None
    log_event(logging.WARNING, 'rate_limit_hit', limit='active_jobs', uid=uid, active_jobs=active_jobs)
    return jsonify({
        'error': f'You already have {active_jobs} active processing job(s). Please wait for one to finish before starting another.'
    }), 429


def start_pipeline(app_ctx, uid, source, *, file_name, file_type, **fields):
    """Create the ``processing`` document and hand it to a worker thread."""
    ref = documents_repo.create_doc_ref(app_ctx.db)
    document_id = ref.id
    job_id = app_ctx.runner.new_job_id()
    record = models.build_document_record(
        document_id,
        uid,
        file_name=file_name,
        file_type=file_type,
        now_ts=app_ctx.time.time(),
        job_id=job_id,
        **fields,
    )
    documents_repo.set_doc(app_ctx.db, document_id, record)
    app_ctx.runner.submit(job_id, document_id, uid, source)
    log_event(logging.INFO, 'document_created', document_id=document_id, job_id=job_id, file_type=file_type, uid=uid)
    return record


def upload_document(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Please sign in to continue'}), 401
    uid = decoded_token['uid']
    busy = active_jobs_response(app_ctx, uid)
    if busy:
        return busy
    config = app_ctx.config
    allowed, retry_after = app_ctx.rate_limiter.check(
        f"upload:{normalize_rate_limit_key_part(uid, fallback='anon_uid')}",
        config.upload_rate_limit_max_requests,
        config.upload_rate_limit_window_seconds,
    )
    if not allowed:
        log_event(logging.WARNING, 'rate_limit_hit', limit='upload', retry_after=retry_after)
        return build_rate_limited_response('Too many upload attempts right now. Please wait and try again.', retry_after)

    payload, error_message = file_service.read_uploaded_document(
        request.files.get('file'),
        max_upload_bytes=config.max_upload_bytes,
    )
    if error_message:
        status_code = 413 if error_message.startswith('File is too large') else 400
        return jsonify({'error': error_message}), status_code

    try:
        text, truncated = file_service.prepare_source_text(payload['data'], payload['file_type'], config.max_source_text_chars)
    except TextExtractionError as exc:
        log_event(logging.INFO, 'upload_rejected', reason=exc.error_code, file_type=payload['file_type'], uid=uid)
        return error_response(exc)

    try:
        blob_key = app_ctx.blob_store.put(payload['data'], payload['file_name'], payload['content_type'])
    except Exception as exc:
        app_ctx.logger.error(f"Error storing upload for user {uid}: {exc}")
        return jsonify({'error': 'Could not store the uploaded file. Please try again.'}), 500

    try:
        record = start_pipeline(
            app_ctx,
            uid,
            GenerationSource(text=text),
            file_name=payload['file_name'],
            file_type=payload['file_type'],
            original_name=payload['original_name'],
            file_size=payload['file_size'],
            blob_key=blob_key,
            text_truncated=truncated,
        )
    except Exception as exc:
        app_ctx.logger.error(f"Error creating document for user {uid}: {exc}")
        app_ctx.blob_store.delete(blob_key)
        return jsonify({'error': 'Could not start processing. Please try again.'}), 500

    return jsonify({
        'message': 'File uploaded successfully. Processing started.',
        'document': {
            'id': record['document_id'],
            'file_name': record['file_name'],
            'file_type': record['file_type'],
            'status': record['status'],
        },
        'job_id': record['job_id'],
    }), 201


def list_documents(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    try:
        documents = documents_repo.list_by_uid(app_ctx.db, uid)
    except Exception as exc:
        app_ctx.logger.error(f"Error listing documents for user {uid}: {exc}")
        return jsonify({'error': 'Could not load documents'}), 500
    documents.sort(key=lambda doc: doc.get('uploaded_at') or doc.get('created_at') or 0, reverse=True)
    return jsonify({'documents': [models.serialize_document(doc) for doc in documents]})


def get_document(app_ctx, request, document_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    db = app_ctx.db
    doc_id = document['document_id']
    summary = artifacts_repo.get_summary(db, doc_id)
    notes = artifacts_repo.get_notes(db, doc_id)
    flashcards = artifacts_repo.list_items(db, artifacts_repo.FLASHCARDS, doc_id, uid)
    quiz_questions = artifacts_repo.list_items(db, artifacts_repo.QUIZ_QUESTIONS, doc_id, uid)
    return jsonify({
        'document': models.serialize_document(document),
        'summary': summary.get('content') if summary else None,
        'notes': {'title': notes.get('title', ''), 'content': notes.get('content', '')} if notes else None,
        'flashcards': [models.serialize_flashcard(card) for card in flashcards],
        'quiz_questions': [models.serialize_quiz_question(question) for question in quiz_questions],
    })


def delete_document(app_ctx, request, document_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    doc_id = document['document_id']
    try:
        removed = artifacts_repo.delete_all_for_document(app_ctx.db, doc_id)
        if document.get('blob_key'):
            app_ctx.blob_store.delete(document['blob_key'])
        documents_repo.delete_doc(app_ctx.db, doc_id)
    except Exception as exc:
        app_ctx.logger.error(f"Error deleting document {doc_id} for user {uid}: {exc}")
        return jsonify({'error': 'Could not delete document'}), 500
    log_event(logging.INFO, 'document_deleted', document_id=doc_id, uid=uid, removed=removed)
    return jsonify({'ok': True, 'deleted': removed})


def rename_document(app_ctx, request, document_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid payload'}), 400
    file_name = str(payload.get('file_name', '') or '').strip()
    if not file_name:
        return jsonify({'error': 'file_name is required'}), 400
    if len(file_name) > MAX_FILE_NAME_LEN:
        return jsonify({'error': f'file_name must be at most {MAX_FILE_NAME_LEN} characters'}), 400
    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    now_ts = app_ctx.time.time()
    documents_repo.update_doc(app_ctx.db, document['document_id'], {'file_name': file_name, 'updated_at': now_ts})
    document.update(file_name=file_name, updated_at=now_ts)
    return jsonify({'document': models.serialize_document(document)})


def regenerate_quiz(app_ctx, request, document_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    doc_id = document['document_id']
    if document.get('status') == models.STATUS_PROCESSING:
        return jsonify({'error': 'This document is still being processed. Try again once it has finished.'}), 409
    try:
        source = source_service.load_text_source(
            app_ctx.db, app_ctx.blob_store, document, app_ctx.config.max_source_text_chars,
        )
        questions = asyncio.run(app_ctx.pipeline.regenerate_quiz(doc_id, uid, source, app_ctx.config.regenerate_quiz_count))
    except StudyAssistantError as exc:
        log_event(logging.WARNING, 'quiz_regeneration_failed', document_id=doc_id, error_code=exc.error_code, error=exc.message)
        if exc.error_code == 'GENERATION_FAILED':
            return jsonify({'error': 'Failed to generate quiz questions. Please try again.'}), 500
        return error_response(exc)
    except Exception as exc:
        app_ctx.logger.error(f"Error regenerating quiz for document {doc_id}: {exc}")
        return jsonify({'error': 'Failed to regenerate quiz'}), 500
    return jsonify({
        'success': True,
        'message': f'Generated {len(questions)} new quiz questions',
        'quiz_questions': [models.serialize_quiz_question(question) for question in questions],
    })


def export_notes(app_ctx, request, document_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    export_format = str(request.args.get('format', 'md') or 'md').strip().lower()
    if export_format not in notes_export_service.EXPORT_FORMATS:
        return jsonify({'error': 'Unsupported export format. Use md or docx.'}), 400
    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    notes = artifacts_repo.get_notes(app_ctx.db, document['document_id'])
    if not notes or not str(notes.get('content', '') or '').strip():
        return jsonify({'error': 'Notes are not available yet'}), 404
    buffer, mimetype, download_name = notes_export_service.render_notes(notes, export_format, document.get('file_name', ''))
    return send_file(buffer, mimetype=mimetype, as_attachment=True, download_name=download_name)
