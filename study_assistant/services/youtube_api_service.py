"""Business logic handler for YouTube video submission."""

import logging
from datetime import datetime, timezone

from flask import jsonify

from study_assistant import models
from study_assistant.logging_config import log_event
from study_assistant.repositories import documents_repo
from study_assistant.services import file_service
from study_assistant.services.document_api_service import active_jobs_response, start_pipeline
from study_assistant.services.generation_service import GenerationSource
from study_assistant.services.rate_limit_service import build_rate_limited_response

MAX_TITLE_LEN = 200


def start_of_day_ts(now_ts):
    now = datetime.fromtimestamp(now_ts, tz=timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0).timestamp()


def parse_duration_seconds(raw_value):
    if raw_value in (None, ''):
        return None
    try:
        value = int(float(raw_value))
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def default_thumbnail(video_id):
    return f'https://i.ytimg.com/vi/{video_id}/hqdefault.jpg'


def submit_youtube_video(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token['uid']
    busy = active_jobs_response(app_ctx, uid)
    if busy:
        return busy
    config = app_ctx.config
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid payload'}), 400

    url, video_id, error_message = file_service.validate_youtube_url(payload.get('url', ''))
    if error_message:
        return jsonify({'error': error_message}), 400
    duration = parse_duration_seconds(payload.get('duration'))
    if duration is not None and duration > config.youtube_max_duration_seconds:
        return jsonify({'error': 'Video exceeds maximum duration limit'}), 400

    now_ts = app_ctx.time.time()
    day_start = start_of_day_ts(now_ts)
    used_today = documents_repo.count_by_type_since(app_ctx.db, uid, models.FILE_TYPE_YOUTUBE, day_start)
    if used_today >= config.youtube_daily_limit:
        log_event(logging.WARNING, 'rate_limit_hit', limit='youtube_daily', uid=uid)
        return build_rate_limited_response(
            f'You have used all {config.youtube_daily_limit} YouTube videos for today.',
            (day_start + 86400) - now_ts,
        )

    existing = documents_repo.find_by_youtube_video(app_ctx.db, uid, video_id)
    if existing:
        return jsonify({
            'error': 'You have already added this YouTube video.',
            'document_id': existing[0].get('document_id') or existing[0].get('id'),
        }), 409

    title = str(payload.get('title', '') or '').strip()[:MAX_TITLE_LEN] or f'YouTube video {video_id}'
    thumbnail = str(payload.get('thumbnail', '') or '').strip() or default_thumbnail(video_id)
    try:
        record = start_pipeline(
            app_ctx,
            uid,
            GenerationSource(media_url=url),
            file_name=title,
            file_type=models.FILE_TYPE_YOUTUBE,
            youtube_url=url,
            youtube_video_id=video_id,
            youtube_thumbnail=thumbnail,
            video_duration=duration,
        )
    except Exception as exc:
        app_ctx.logger.error(f"Error creating YouTube document for user {uid}: {exc}")
        return jsonify({'error': 'Failed to add YouTube video'}), 500

    return jsonify({
        'success': True,
        'message': 'YouTube video added successfully. Processing will begin shortly.',
        'document': {
            'id': record['document_id'],
            'file_name': record['file_name'],
            'file_type': record['file_type'],
            'youtube_url': record['youtube_url'],
            'youtube_thumbnail': record['youtube_thumbnail'],
            'video_duration': record['video_duration'],
            'status': record['status'],
        },
        'job_id': record['job_id'],
        'remaining': max(0, config.youtube_daily_limit - used_today - 1),
    }), 201
