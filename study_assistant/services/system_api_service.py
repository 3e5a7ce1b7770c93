"""Business logic handlers for health, model and job status endpoints."""

import asyncio

from flask import jsonify

from study_assistant.errors import StudyAssistantError
from study_assistant.services import prompt_registry
from study_assistant.services.pipeline_service import run_async


def healthz(app_ctx, request):
    return jsonify({
        'ok': True,
        'firestore': app_ctx.db is not None,
        'inference': app_ctx.inference.ready,
        'blob_backend': app_ctx.config.blob_backend,
    })


def model_status(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    resolver = app_ctx.inference.resolver
    if str(request.args.get('refresh', '') or '').strip().lower() in {'1', 'true', 'yes'}:
        resolver.reset()
    body = {
        'configured': app_ctx.inference.ready,
        'candidates': list(resolver.candidates),
        'resolved_model': resolver.resolved_model,
        'prompts': prompt_registry.get_prompt_metadata(),
    }
    if not app_ctx.inference.ready:
        return jsonify(dict(body, error='GEMINI_API_KEY is not set; AI processing is disabled.')), 503
    timeout = app_ctx.config.generator_timeout_seconds
    try:
        body['resolved_model'] = run_async(asyncio.wait_for(resolver.resolve(), timeout=timeout))
    except asyncio.TimeoutError:
        return jsonify(dict(body, error=f'Model resolution timed out after {timeout:g}s', probe_errors=resolver.last_errors)), 504
    except StudyAssistantError as exc:
        return jsonify(dict(body, error=exc.message, probe_errors=resolver.last_errors)), exc.status_code
    body['probe_errors'] = resolver.last_errors
    return jsonify(body)


def job_status(app_ctx, request, job_id):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    job = app_ctx.jobs.snapshot(job_id)
    if not job or job.get('uid') != decoded_token['uid']:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify({
        'job_id': job['job_id'],
        'document_id': job.get('document_id', ''),
        'status': job.get('status'),
        'document_status': job.get('document_status'),
        'outcomes': job.get('outcomes', []),
        'error': job.get('error'),
        'created_at': job.get('created_at'),
        'started_at': job.get('started_at'),
        'finished_at': job.get('finished_at'),
    })
