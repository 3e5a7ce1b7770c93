"""Runtime services shared by request handlers, bundled as an ``AppContext``."""

import json
import logging
import os
import time
from dataclasses import dataclass, field

import firebase_admin
import sentry_sdk
from firebase_admin import auth, credentials, firestore
from sentry_sdk.integrations.flask import FlaskIntegration

from study_assistant.logging_config import logger as default_logger
from study_assistant.services import auth_service, blob_storage
from study_assistant.services.inference_service import InferenceClient
from study_assistant.services.job_state_service import JobRegistry
from study_assistant.services.pipeline_service import DocumentPipeline, PipelineRunner
from study_assistant.services.rate_limit_service import RateLimiter

FIREBASE_CREDENTIALS_FILE = 'firebase-credentials.json'


@dataclass
class AppContext:
    config: object
    db: object
    blob_store: object
    inference: object
    jobs: object
    pipeline: object
    runner: object
    rate_limiter: object
    auth_module: object = None
    firebase_init_error: str = ''
    logger: logging.Logger = field(default=default_logger)
    time: object = field(default=time)

    def verify_firebase_token(self, request):
        return auth_service.verify_firebase_token(request, self.auth_module)


def init_firebase():
    """Return ``(firestore_client, auth_module, error_message)``."""
    try:
        if os.path.exists(FIREBASE_CREDENTIALS_FILE):
            cred = credentials.Certificate(FIREBASE_CREDENTIALS_FILE)
        else:
            firebase_creds_raw = (os.getenv('FIREBASE_CREDENTIALS', '') or '').strip()
            if not firebase_creds_raw:
                raise ValueError('FIREBASE_CREDENTIALS is not set and firebase-credentials.json was not found.')
            cred = credentials.Certificate(json.loads(firebase_creds_raw))
        if not firebase_admin._apps:
            firebase_admin.initialize_app(cred)
        return firestore.client(), auth, ''
    except Exception as exc:
        default_logger.info(f"Firebase initialization skipped: {exc}")
        return None, None, str(exc)


def init_sentry(config):
    if not config.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        send_default_pii=False,
        environment=config.sentry_environment,
        release=config.sentry_release,
    )
    return True


def build_app_context(config, **overrides):
    """Assemble the runtime services; any of them can be replaced via ``overrides``."""
    if 'db' in overrides:
        db = overrides.pop('db')
        auth_module = overrides.pop('auth_module', None)
        firebase_error = ''
    else:
        db, auth_module, firebase_error = init_firebase()
        auth_module = overrides.pop('auth_module', auth_module)

    blob_store = overrides.pop('blob_store', None) or blob_storage.build_blob_store(config)
    inference = overrides.pop('inference', None) or InferenceClient(
        config.gemini_api_key,
        config.model_candidates,
        request_timeout_seconds=config.generator_timeout_seconds,
    )
    jobs = overrides.pop('jobs', None) or JobRegistry()
    pipeline = DocumentPipeline(db=db, inference=inference, config=config)
    runner_kwargs = {'job_ttl_seconds': config.job_ttl_seconds}
    if 'thread_factory' in overrides:
        runner_kwargs['thread_factory'] = overrides.pop('thread_factory')
    runner = PipelineRunner(pipeline, jobs, **runner_kwargs)
    rate_limiter = overrides.pop('rate_limiter', None) or RateLimiter(
        db=db if config.rate_limit_firestore_enabled else None,
        firestore_module=firestore,
    )
    return AppContext(
        config=config,
        db=db,
        blob_store=blob_store,
        inference=inference,
        jobs=jobs,
        pipeline=pipeline,
        runner=runner,
        rate_limiter=rate_limiter,
        auth_module=auth_module,
        firebase_init_error=firebase_error,
        **overrides,
    )


def get_app_context(app):
    return app.extensions['study_assistant']
