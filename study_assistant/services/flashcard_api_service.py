"""Business logic handler for AI-graded flashcard answers."""

import asyncio
import logging
from functools import partial

from flask import jsonify

from study_assistant.errors import StudyAssistantError
from study_assistant.logging_config import log_event
from study_assistant.repositories import artifacts_repo
from study_assistant.services import ai_cost_service, generation_service
from study_assistant.services.document_api_service import error_response
from study_assistant.services.rate_limit_service import build_rate_limited_response, normalize_rate_limit_key_part

MAX_ANSWER_LEN = 2000


def verify_flashcard_answer(app_ctx, request, flashcard_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    config = app_ctx.config
    allowed, retry_after = app_ctx.rate_limiter.check(
        f"answer_check:{normalize_rate_limit_key_part(uid, fallback='anon_uid')}",
        config.qa_rate_limit_max_requests,
        config.qa_rate_limit_window_seconds,
    )
    if not allowed:
        log_event(logging.WARNING, 'rate_limit_hit', limit='answer_check', retry_after=retry_after)
        return build_rate_limited_response('Too many answer checks right now. Please wait and try again.', retry_after)

    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid payload'}), 400
    user_answer = str(payload.get('user_answer', '') or '').strip()
    if not user_answer:
        return jsonify({'error': 'An answer is required'}), 400
    if len(user_answer) > MAX_ANSWER_LEN:
        return jsonify({'error': f'Answer must be at most {MAX_ANSWER_LEN} characters'}), 400

    safe_id = str(flashcard_id or '').strip()
    card = artifacts_repo.get_item(app_ctx.db, artifacts_repo.FLASHCARDS, safe_id) if safe_id else None
    if not card or card.get('uid') != uid:
        return jsonify({'error': 'Flashcard not found'}), 404

    document_id = card.get('document_id', '')
    cost_hook = partial(_record_cost, app_ctx.db, uid, document_id)
    try:
        verdict = asyncio.run(generation_service.check_flashcard_answer(
            app_ctx.inference,
            card.get('question', ''),
            card.get('answer', ''),
            user_answer,
            cost_hook=cost_hook,
        ))
    except StudyAssistantError as exc:
        log_event(logging.WARNING, 'answer_check_failed', flashcard_id=safe_id, error_code=exc.error_code, error=exc.message)
        return error_response(exc)
    except Exception as exc:
        app_ctx.logger.error(f"Answer check error for flashcard {safe_id}: {exc}")
        return jsonify({'error': 'Could not verify the answer right now'}), 500

    try:
        artifacts_repo.update_item(app_ctx.db, artifacts_repo.FLASHCARDS, safe_id, {
            'is_known': verdict['is_correct'],
            'reviewed_at': app_ctx.time.time(),
        })
    except Exception as exc:
        app_ctx.logger.error(f"Could not record review for flashcard {safe_id}: {exc}")
    log_event(logging.INFO, 'flashcard_answer_checked', flashcard_id=safe_id, document_id=document_id, is_correct=verdict['is_correct'])
    return jsonify({'success': True, 'is_correct': verdict['is_correct'], 'feedback': verdict['feedback']})


def _record_cost(db, uid, document_id, operation, result, prompt):
    ai_cost_service.record_ai_cost(db, operation, result, prompt, uid=uid, document_id=document_id)
