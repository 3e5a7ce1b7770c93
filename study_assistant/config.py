import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

DEV_ENV_NAMES = {'development', 'dev', 'local', 'test'}
DEFAULT_MODEL_CANDIDATES = ('gemini-2.5-flash', 'gemini-2.5-flash-lite', 'gemini-2.0-flash')


def safe_int_env(name, default=0, minimum=1, maximum=100000):
    try:
        value = int(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        value = default
    return max(minimum, min(maximum, value))


def safe_float_env(name, default=0.0, minimum=0.0, maximum=3600.0):
    try:
        value = float(str(os.getenv(name, default)).strip())
    except (TypeError, ValueError):
        value = default
    return max(minimum, min(maximum, value))


def env_flag(name, default='1'):
    return str(os.getenv(name, default)).strip().lower() in {'1', 'true', 'yes', 'on'}


def parse_model_candidates(raw_value):
    names = [part.strip() for part in str(raw_value or '').split(',') if part.strip()]
    deduped = []
    for name in names:
        if name not in deduped:
            deduped.append(name)
    return tuple(deduped) or DEFAULT_MODEL_CANDIDATES


def resolve_runtime_env():
    return (
        os.getenv('SENTRY_ENVIRONMENT')
        or os.getenv('FLASK_ENV')
        or os.getenv('ENV')
        or ('production' if os.getenv('RENDER') else 'development')
    ).strip().lower()


@dataclass(frozen=True)
class AppConfig:
    """Central config object, read once from the environment."""

    flask_secret_key: str = field(default_factory=lambda: os.getenv('FLASK_SECRET_KEY', ''))
    log_level: str = field(default_factory=lambda: (os.getenv('LOG_LEVEL', 'INFO') or 'INFO').strip().upper())
    runtime_env: str = field(default_factory=resolve_runtime_env)

    gemini_api_key: str = field(default_factory=lambda: (os.getenv('GEMINI_API_KEY', '') or '').strip())
    model_candidates: Tuple[str, ...] = field(default_factory=lambda: parse_model_candidates(os.getenv('GEMINI_MODEL_CANDIDATES', '')))

    max_upload_bytes: int = field(default_factory=lambda: safe_int_env('MAX_UPLOAD_BYTES', 10 * 1024 * 1024, minimum=1024, maximum=100 * 1024 * 1024))
    max_source_text_chars: int = field(default_factory=lambda: safe_int_env('MAX_SOURCE_TEXT_CHARS', 10000, minimum=500, maximum=500000))
    flashcard_count: int = field(default_factory=lambda: safe_int_env('FLASHCARD_COUNT', 10, minimum=1, maximum=50))
    quiz_question_count: int = field(default_factory=lambda: safe_int_env('QUIZ_QUESTION_COUNT', 10, minimum=1, maximum=50))
    regenerate_quiz_count: int = field(default_factory=lambda: safe_int_env('REGENERATE_QUIZ_COUNT', 5, minimum=1, maximum=50))
    generator_timeout_seconds: float = field(default_factory=lambda: safe_float_env('GENERATOR_TIMEOUT_SECONDS', 120.0, minimum=1.0, maximum=1800.0))
    status_poll_interval_seconds: float = field(default_factory=lambda: safe_float_env('STATUS_POLL_INTERVAL_SECONDS', 5.0, minimum=0.5, maximum=300.0))
    job_ttl_seconds: int = field(default_factory=lambda: safe_int_env('JOB_TTL_SECONDS', 2 * 60 * 60, minimum=60, maximum=7 * 24 * 3600))
    max_active_jobs_per_user: int = field(default_factory=lambda: safe_int_env('MAX_ACTIVE_JOBS_PER_USER', 2, minimum=1, maximum=20))
    status_write_attempts: int = field(default_factory=lambda: safe_int_env('STATUS_WRITE_ATTEMPTS', 3, minimum=1, maximum=10))
    status_write_backoff_seconds: float = field(default_factory=lambda: safe_float_env('STATUS_WRITE_BACKOFF_SECONDS', 0.5, minimum=0.0, maximum=30.0))

    blob_backend: str = field(default_factory=lambda: (os.getenv('BLOB_BACKEND', 'local') or 'local').strip().lower())
    upload_folder: str = field(default_factory=lambda: os.getenv('UPLOAD_FOLDER', 'uploads'))
    s3_bucket: str = field(default_factory=lambda: os.getenv('S3_BUCKET', 'study-assistant-documents'))
    s3_region: str = field(default_factory=lambda: os.getenv('AWS_REGION', 'us-east-1'))
    s3_prefix: str = field(default_factory=lambda: os.getenv('S3_PREFIX', 'documents'))

    youtube_daily_limit: int = field(default_factory=lambda: safe_int_env('YOUTUBE_DAILY_LIMIT', 3, minimum=1, maximum=100))
    youtube_max_duration_seconds: int = field(default_factory=lambda: safe_int_env('YOUTUBE_MAX_DURATION_SECONDS', 60 * 60, minimum=60, maximum=6 * 60 * 60))

    upload_rate_limit_window_seconds: int = field(default_factory=lambda: safe_int_env('UPLOAD_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=86400))
    upload_rate_limit_max_requests: int = field(default_factory=lambda: safe_int_env('UPLOAD_RATE_LIMIT_MAX_REQUESTS', 10, minimum=1, maximum=1000))
    qa_rate_limit_window_seconds: int = field(default_factory=lambda: safe_int_env('QA_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=86400))
    qa_rate_limit_max_requests: int = field(default_factory=lambda: safe_int_env('QA_RATE_LIMIT_MAX_REQUESTS', 20, minimum=1, maximum=1000))
    rate_limit_firestore_enabled: bool = field(default_factory=lambda: env_flag('RATE_LIMIT_FIRESTORE_ENABLED'))

    sentry_dsn: str = field(default_factory=lambda: os.getenv('SENTRY_DSN_BACKEND', '').strip())
    sentry_environment: str = field(default_factory=lambda: (os.getenv('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production')) or 'production').strip())
    sentry_release: str = field(default_factory=lambda: (os.getenv('SENTRY_RELEASE', 'study-assistant') or 'study-assistant').strip())

    @property
    def is_dev_like(self):
        return self.runtime_env in DEV_ENV_NAMES


def load_config() -> AppConfig:
    load_dotenv()
    config = AppConfig()
    if not config.is_dev_like and not config.flask_secret_key.strip():
        raise RuntimeError('FLASK_SECRET_KEY must be set in non-development environments.')
    if config.blob_backend not in {'local', 's3'}:
        raise RuntimeError(f"Unsupported BLOB_BACKEND: {config.blob_backend}")
    return config
