"""Firebase ID token verification for API requests."""

import logging

from study_assistant.logging_config import log_event


def extract_bearer_token(request):
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return ''
    return auth_header.split('Bearer ', 1)[1].strip()


def verify_firebase_token(request, auth_module):
    """Return the decoded Firebase token dict, or None when invalid/missing."""
    token = extract_bearer_token(request)
    if not token or auth_module is None:
        return None
    try:
        decoded = auth_module.verify_id_token(token)
    except Exception as exc:
        log_event(logging.INFO, 'token_verification_failed', error=str(exc)[:200])
        return None
    if not isinstance(decoded, dict) or not decoded.get('uid'):
        return None
    return decoded
