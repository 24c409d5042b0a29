"""
Rate limiting for the CAPA API.

The Limiter in auditcapa/__init__.py carries no default limit; limits are
attached here per blueprint once they are registered:

    capa, finding   CAPA_WRITE_LIMIT per client IP, plus CAPA_TENANT_LIMIT
                    shared by everyone acting for the same tenant
    notification    INBOX_READ_LIMIT per client IP (the inbox is polled)
    health          exempt

    from auditcapa.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {
    "CAPA_WRITE_LIMIT": "60/minute",
    "CAPA_TENANT_LIMIT": "600/minute",
    "INBOX_READ_LIMIT": "200/minute",
}


def tenant_rate_limit_key():
    """``tenant:<id>`` once the actor context has run, else the client IP."""
    tenant_id = getattr(g, "tenant_id", None)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """Attach blueprint limits; a no-op when TESTING or RATELIMIT_ENABLED is off."""
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiter disabled")
        return

    limits = {key: app.config.get(key, default) for key, default in DEFAULT_LIMITS.items()}

    for name in ("capa", "finding"):
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        limiter.limit(limits["CAPA_WRITE_LIMIT"])(bp)
        limiter.limit(limits["CAPA_TENANT_LIMIT"], key_func=tenant_rate_limit_key)(bp)

    if "notification" in app.blueprints:
        limiter.limit(limits["INBOX_READ_LIMIT"])(app.blueprints["notification"])
    if "health" in app.blueprints:
        limiter.exempt(app.blueprints["health"])

    logger.info("Rate limits applied: %s", ", ".join(f"{k}={v}" for k, v in limits.items()))
