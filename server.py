import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import config
from errors import RateLimited, ServiceError
from extensions import limiter, payment_rate_limiter
from middleware.request_id import RequestIdFilter, RequestIdMiddleware
from models import db, plaintext_code_columns_present
from paystack_service import PaystackClient
from responses import error_response, load_json_body
from routes import job_codes_bp, jobs_bp, payments_bp, splits_bp, payouts_bp

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"

_startup_logger = logging.getLogger("fundi.startup")
logger = logging.getLogger(__name__)

_CRITICAL_ENV_VARS = [
    "JWT_SECRET",
    "SECRET_KEY",
    "DATABASE_URL",
    "PAYSTACK_SECRET_KEY",
]

_RECOMMENDED_ENV_VARS = [
    "ALLOWED_ORIGINS",
    "REDIS_URL",
]

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-request-id"]


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
def _configure_logging(app):
    logging.basicConfig(level=app.config["LOG_LEVEL"], format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(app.config["LOG_LEVEL"])
    for handler in root.handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())


# ---------------------------------------------------------------------------
# Sentry error monitoring (optional -- only active when SENTRY_DSN is set)
# ---------------------------------------------------------------------------
def _init_sentry():
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    return True


# ---------------------------------------------------------------------------
# Production startup checks
# ---------------------------------------------------------------------------
def _check_environment(config_name, sentry_enabled):
    if config_name in ("development", "testing"):
        return
    missing_critical = [v for v in _CRITICAL_ENV_VARS if not os.environ.get(v)]
    if "JWT_SECRET" in missing_critical and os.environ.get("SUPABASE_JWT_SECRET"):
        missing_critical.remove("JWT_SECRET")
    missing_recommended = [v for v in _RECOMMENDED_ENV_VARS if not os.environ.get(v)]

    if missing_critical:
        _startup_logger.critical(
            "MISSING CRITICAL ENV VARS (app may not work correctly): %s",
            ", ".join(missing_critical),
        )
    if missing_recommended:
        _startup_logger.warning(
            "Missing recommended env vars: %s",
            ", ".join(missing_recommended),
        )
    if not sentry_enabled:
        _startup_logger.warning("SENTRY_DSN is not set -- error monitoring is disabled.")


def _resolve_plaintext_storage(app):
    setting = app.config.get("HANDSHAKE_STORE_PLAINTEXT")
    if setting is None:
        setting = plaintext_code_columns_present(db.engine)
        if not setting:
            _startup_logger.warning(
                "jobs table has no display-code columns; handshake codes are shown once only"
            )
    app.config["HANDSHAKE_STORE_PLAINTEXT"] = bool(setting)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
def _register_error_handlers(app):
    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", e.__class__.__name__, e.message)
        response, status = error_response(
            e.message, e.status_code, error_code=e.error_code, **e.details
        )
        if isinstance(e, RateLimited) and e.retry_after:
            response.headers["Retry-After"] = str(e.retry_after)
        return response, status

    @app.errorhandler(429)
    def ratelimit_handler(e):
        # Flask-Limiter sets Retry-After on the exception; read it back.
        retry_after = e.get_headers().get("Retry-After") if hasattr(e, "get_headers") else None
        retry_after_seconds = int(retry_after) if retry_after else 60
        response, status = error_response(
            "Too many requests. Please try again later.", 429,
            error_code="rate_limited", retry_after=retry_after_seconds,
        )
        response.headers["Retry-After"] = str(retry_after_seconds)
        return response, status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return error_response(e.description or e.name, e.code, error_code=e.name.lower().replace(" ", "_"))

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return error_response("Internal server error", 500, error_code="internal_error")


def create_app(config_name=None):
    """Flask application factory"""
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    _configure_logging(app)
    sentry_enabled = _init_sentry()
    _check_environment(config_name, sentry_enabled)

    app.wsgi_app = RequestIdMiddleware(app.wsgi_app)

    # -----------------------------------------------------------------------
    # CORS configuration
    # -----------------------------------------------------------------------
    origins = app.config["CORS_ORIGINS"]
    if config_name == "production" and "*" in origins:
        _startup_logger.critical(
            "ALLOWED_ORIGINS contains '*' in production; refusing wildcard CORS."
        )
        origins = [o for o in origins if o != "*"]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["X-Request-ID", "Retry-After"],
        methods=["GET", "POST", "OPTIONS"],
        max_age=86400,
    )

    # -----------------------------------------------------------------------
    # Initialize extensions
    # -----------------------------------------------------------------------
    db.init_app(app)
    limiter.init_app(app)
    payment_rate_limiter.init_app(app)
    app.extensions["paystack"] = PaystackClient.from_config(app.config)

    app.register_blueprint(job_codes_bp)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(splits_bp)
    app.register_blueprint(payouts_bp)

    _register_error_handlers(app)

    app.before_request(load_json_body)

    # -----------------------------------------------------------------------
    # Security headers middleware
    # -----------------------------------------------------------------------
    is_development = config_name == "development"

    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'"
        if not is_development:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.route("/api/health")
    @limiter.exempt
    def health():
        return {"status": "healthy", "service": "fundi-backend"}, 200

    with app.app_context():
        db.create_all()
        _resolve_plaintext_storage(app)

    @app.cli.command("init-db")
    def cli_init_db():
        """Create missing tables and report handshake code storage."""
        db.create_all()
        click.echo("Tables ready.")
        click.echo(
            "Display-code columns present: {}".format(plaintext_code_columns_present(db.engine))
        )

    return app
