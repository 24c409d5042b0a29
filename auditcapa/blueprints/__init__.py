"""
Audit CAPA Platform
Blueprint registry helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from auditcapa.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from auditcapa.models import db
from auditcapa.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 200, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


class MalformedRequest(Exception):
    """Body is not a JSON object."""


def json_body() -> dict:
    """Return the request JSON object ({} for an empty body)."""
    data = request.get_json(silent=True)
    if data is None:
        if request.get_data(cache=True):
            raise MalformedRequest("Request body must be valid JSON")
        return {}
    if not isinstance(data, dict):
        raise MalformedRequest("Request body must be a JSON object")
    return data


def json_flag(data: dict, key: str, default: bool = False) -> bool:
    """Read an optional boolean; only JSON ``true`` / ``false`` are accepted.

    ``"false"`` or ``0`` would otherwise be truthy and trigger a side effect
    the caller did not ask for.
    """
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean", details={key: "must be true or false"})
    return value


def register_error_handlers(bp):
    """Map the service exception hierarchy to JSON responses on *bp*.

    Every handler rolls the session back: a rejected transition may have
    locked or partially loaded the case row.
    """

    @bp.errorhandler(MalformedRequest)
    def _handle_malformed(error):
        db.session.rollback()
        return api_error(E.MALFORMED, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details={"field": error.field})

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
