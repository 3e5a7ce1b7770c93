"""Business logic handler for document question answering."""

import asyncio
import logging
from functools import partial

from flask import jsonify

from study_assistant.errors import StudyAssistantError
from study_assistant.logging_config import log_event
from study_assistant.services import ai_cost_service, generation_service, source_service
from study_assistant.services.document_api_service import error_response, load_owned_document
from study_assistant.services.rate_limit_service import build_rate_limited_response, normalize_rate_limit_key_part

MAX_QUESTION_LEN = 2000


def ask_question(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    config = app_ctx.config
    allowed, retry_after = app_ctx.rate_limiter.check(
        f"qa:{normalize_rate_limit_key_part(uid, fallback='anon_uid')}",
        config.qa_rate_limit_max_requests,
        config.qa_rate_limit_window_seconds,
    )
    if not allowed:
        log_event(logging.WARNING, 'rate_limit_hit', limit='qa', retry_after=retry_after)
        return build_rate_limited_response('Too many questions right now. Please wait and try again.', retry_after)

    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid payload'}), 400
    document_id = str(payload.get('document_id', '') or '').strip()
    question = str(payload.get('question', '') or '').strip()
    if not document_id or not question:
        return jsonify({'error': 'Document ID and question are required'}), 400
    if len(question) > MAX_QUESTION_LEN:
        return jsonify({'error': f'Question must be at most {MAX_QUESTION_LEN} characters'}), 400

    document = load_owned_document(app_ctx, document_id, uid)
    if not document:
        return jsonify({'error': 'Document not found'}), 404
    doc_id = document['document_id']
    cost_hook = partial(_record_cost, app_ctx.db, uid, doc_id)
    try:
        source = source_service.load_text_source(app_ctx.db, app_ctx.blob_store, document, config.max_source_text_chars)
        answer = asyncio.run(generation_service.answer_question(app_ctx.inference, source, question, cost_hook=cost_hook))
    except StudyAssistantError as exc:
        log_event(logging.WARNING, 'qa_failed', document_id=doc_id, error_code=exc.error_code, error=exc.message)
        return error_response(exc)
    except Exception as exc:
        app_ctx.logger.error(f"Q&A error for document {doc_id}: {exc}")
        return jsonify({'error': 'Could not answer the question right now'}), 500
    return jsonify({'answer': answer, 'question': question})


def _record_cost(db, uid, document_id, operation, result, prompt):
    ai_cost_service.record_ai_cost(db, operation, result, prompt, uid=uid, document_id=document_id)
