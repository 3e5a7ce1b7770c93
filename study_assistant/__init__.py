import uuid

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge

from .config import load_config
from .errors import StudyAssistantError
from .extensions import build_app_context, init_sentry
from .logging_config import configure_logging, logger


def create_app(config=None, **overrides):
    """App factory.

    ``overrides`` replace runtime services (``db``, ``auth_module``,
    ``blob_store``, ``inference``, ``jobs``, ``thread_factory``,
    ``rate_limiter``) and are mainly used by tests.
    """
    config = config or load_config()
    configure_logging(config.log_level)
    init_sentry(config)

    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.flask_secret_key or uuid.uuid4().hex
    # multipart overhead on top of the file itself
    app.config['MAX_CONTENT_LENGTH'] = config.max_upload_bytes + 1024 * 1024
    app.extensions['study_assistant'] = build_app_context(config, **overrides)

    from .blueprints import documents_bp, flashcards_bp, qa_bp, system_bp, youtube_bp

    app.register_blueprint(documents_bp)
    app.register_blueprint(youtube_bp)
    app.register_blueprint(qa_bp)
    app.register_blueprint(flashcards_bp)
    app.register_blueprint(system_bp)

    @app.before_request
    def attach_request_id():
        g.request_id = str(request.headers.get('X-Request-ID', '') or '').strip()[:120] or uuid.uuid4().hex

    @app.after_request
    def echo_request_id(response):
        request_id = str(getattr(g, 'request_id', '') or '').strip()
        if request_id:
            response.headers['X-Request-ID'] = request_id
        return response

    @app.errorhandler(StudyAssistantError)
    def handle_study_assistant_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.error_code}: {error.message} {error.context}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_entity_too_large(_error):
        limit_mb = config.max_upload_bytes // (1024 * 1024)
        return jsonify({'error': f'File is too large. Maximum size is {limit_mb}MB.'}), 413

    return app
