"""
Audit CAPA Platform
Configuration classes for the app factory, selected by APP_ENV.

    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Everything deployment-specific comes from the environment:

    DATABASE_URL            PostgreSQL in production, SQLite file otherwise
    SECRET_KEY              required in production
    REDIS_URL               health check target
    SOCKETIO_MESSAGE_QUEUE  set when several workers share realtime rooms
    REALTIME_ENABLED        "false" turns the Socket.IO push channel off
    MR_ROLE_NAME            role whose holder receives MR escalations
    CORS_ORIGINS            "*" or a comma-separated list
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _database_url(fallback=None):
    # Hosted providers hand out postgres://; SQLAlchemy 2.x only accepts postgresql://
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workflow
    MR_ROLE_NAME = os.getenv("MR_ROLE_NAME", "MR")

    # Realtime push
    REALTIME_ENABLED = _flag("REALTIME_ENABLED", "true")
    SOCKETIO_MESSAGE_QUEUE = os.getenv("SOCKETIO_MESSAGE_QUEUE")

    # Flask-Limiter
    RATELIMIT_ENABLED = _flag("RATELIMIT_ENABLED", "true")
    CAPA_WRITE_LIMIT = os.getenv("CAPA_WRITE_LIMIT", "60/minute")
    CAPA_TENANT_LIMIT = os.getenv("CAPA_TENANT_LIMIT", "600/minute")
    INBOX_READ_LIMIT = os.getenv("INBOX_READ_LIMIT", "200/minute")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'auditcapa_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    # In-memory SQLite runs on a StaticPool; pool options do not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    # Tests swap a recording channel into app.extensions instead
    REALTIME_ENABLED = False
    MR_ROLE_NAME = "MR"


class ProductionConfig(Config):
    """Refuses to build without DATABASE_URL and a stable SECRET_KEY."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Stage transitions hold a row lock; never let one statement hang the case
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
