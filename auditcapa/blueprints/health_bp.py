"""
Health check blueprint.

    GET /api/v1/health/ready   200 as soon as the app serves requests
    GET /api/v1/health/live    database, Redis and realtime status

Only the database decides the overall status. Redis and the realtime
channel are reported but a stored notification still reaches its inbox
without them.
"""

import logging
import time

import redis as redis_lib
from flask import Blueprint, current_app, jsonify

from auditcapa.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _timed(fn):
    t0 = time.perf_counter()
    fn()
    return round((time.perf_counter() - t0) * 1000, 1)


def _check_database():
    try:
        return {"status": "ok", "latency_ms": _timed(lambda: db.session.execute(db.text("SELECT 1")))}
    except Exception as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_redis():
    url = current_app.config.get("REDIS_URL") or ""
    if current_app.testing or not url.startswith(("redis://", "rediss://")):
        return {"status": "skipped"}
    try:
        client = redis_lib.from_url(url, socket_timeout=2)
        return {"status": "ok", "latency_ms": _timed(client.ping)}
    except redis_lib.RedisError as exc:
        logger.warning("Health check: redis unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_realtime():
    channel = current_app.extensions.get("auditcapa.realtime")
    if not current_app.config.get("REALTIME_ENABLED"):
        return {"status": "disabled"}
    return {"status": "ok" if channel is not None and channel.available else "unavailable"}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        "realtime": _check_realtime(),
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "app": {"name": "Audit CAPA Platform", "testing": current_app.testing},
    }), 200 if healthy else 503
