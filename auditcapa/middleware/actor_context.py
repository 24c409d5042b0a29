"""
Actor Context Middleware - who is acting, in which tenant.

Authentication happens upstream (gateway / SSO); requests arrive with the
already-authenticated identity in headers:

    X-Tenant-Id   tenant of the request (falls back to ?tenant_id=, then to
                  "tenant_id" in a JSON object body)
    X-User-Id     acting user (falls back to ?user_id=)

For every /api/v1/ request outside TENANT_SKIP_PREFIXES this hook:
  1. requires both ids            → 401 otherwise
  2. verifies the tenant is active → 403 otherwise
  3. verifies the user is an active member of the tenant → 403 otherwise
  4. sets g.tenant_id, g.tenant, g.user_id, g.user

Chain order:
  actor_context.py  →  route handler
"""

import logging

from flask import g, request

from auditcapa.models import db
from auditcapa.models.auth import Tenant
from auditcapa.models.auth import User
from auditcapa.utils.errors import E, api_error

logger = logging.getLogger(__name__)

TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _int_or_none(raw):
    if raw is None:
        return None
    raw = str(raw).strip()
    return int(raw) if raw.isdigit() else None


def _body_tenant_id():
    if not request.is_json:
        return None
    body = request.get_json(silent=True)
    return body.get("tenant_id") if isinstance(body, dict) else None


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.tenant = None
        g.tenant_id = None
        g.user = None
        g.user_id = None

        if not request.path.startswith("/api/v1/"):
            return None

        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id = _int_or_none(
            request.headers.get("X-Tenant-Id") or request.args.get("tenant_id") or _body_tenant_id()
        )
        user_id = _int_or_none(request.headers.get("X-User-Id") or request.args.get("user_id"))
        if tenant_id is None or user_id is None:
            return api_error(E.UNAUTHENTICATED, "X-Tenant-Id and X-User-Id headers are required")

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning("Request for unknown or inactive tenant %s", tenant_id)
            return api_error(E.FORBIDDEN, "Tenant not found or deactivated")

        user = db.session.get(User, user_id)
        if user is None or user.tenant_id != tenant_id or not user.is_active:
            logger.warning(
                "User %s is not an active member of tenant %s", user_id, tenant_id,
                extra={"tenant_id": tenant_id, "user_id": user_id},
            )
            return api_error(E.FORBIDDEN, "User is not an active member of this tenant")

        g.tenant = tenant
        g.tenant_id = tenant_id
        g.user = user
        g.user_id = user_id
        return None

    logger.info("Actor context middleware installed")
