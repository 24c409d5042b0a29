"""
Audit CAPA Platform
Flask Application Factory.

Usage:
    from auditcapa import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from auditcapa.config import config
from auditcapa.middleware.actor_context import init_actor_context
from auditcapa.middleware.logging_config import configure_logging
from auditcapa.middleware.rate_limiter import init_rate_limits
from auditcapa.models import db
from auditcapa.services.realtime import RealtimeChannel, register_realtime_events, socketio
from auditcapa.utils.errors import E, error_body

logger = logging.getLogger(__name__)

REALTIME_EXTENSION = "auditcapa.realtime"


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _allowed_origins(raw):
    """"*" stays a wildcard; otherwise a comma-separated list of origins."""
    if not raw or raw == "*":
        return "*"
    return [o.strip() for o in raw.split(",") if o.strip()]


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = _allowed_origins(app.config.get("CORS_ORIGINS", "*"))
    CORS(app, origins=origins)

    # ── Realtime push channel (same origin list as the REST API) ─────────
    if app.config.get("REALTIME_ENABLED"):
        socketio.init_app(
            app,
            message_queue=app.config.get("SOCKETIO_MESSAGE_QUEUE"),
            cors_allowed_origins=origins,
        )
        register_realtime_events(socketio)
        logger.info("Realtime push enabled (queue=%s)", app.config.get("SOCKETIO_MESSAGE_QUEUE") or "in-process")
    app.extensions[REALTIME_EXTENSION] = RealtimeChannel()

    # ── Actor context (sets g.tenant_id / g.user_id) ────────────────────
    init_actor_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from auditcapa.models import audit as _audit_models                # noqa: F401
    from auditcapa.models import auth as _auth_models                  # noqa: F401
    from auditcapa.models import capa as _capa_models                  # noqa: F401
    from auditcapa.models import finding as _finding_models            # noqa: F401
    from auditcapa.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from auditcapa.blueprints.capa_bp import capa_bp
    from auditcapa.blueprints.finding_bp import finding_bp
    from auditcapa.blueprints.health_bp import health_bp
    from auditcapa.blueprints.notification_bp import notification_bp

    app.register_blueprint(capa_bp)
    app.register_blueprint(finding_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── Health check (short form - detailed version at /health/live) ────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Audit CAPA Platform"}

    # ── App-level JSON errors (blueprint handlers cover service exceptions) ──
    @app.errorhandler(404)
    def not_found(e):
        return error_body(E.NOT_FOUND, "Not found", path=request.path), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_body(E.METHOD_NOT_ALLOWED, "Method not allowed"), 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return error_body(E.MALFORMED, e.description), 415

    @app.errorhandler(429)
    def rate_limited(e):
        return error_body(E.RATE_LIMITED, "Too many requests", retry_after=e.description), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return error_body(E.INTERNAL, "Internal server error"), 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
