"""JSON error bodies for the CAPA API.

Every failure the API returns has the same shape::

    {"error": "<message>", "code": "ERR_*", "details": {...}}

``details`` appears only when there is something structured to report:
field errors on a rejected stage payload (422), or the stage that is
already filled in (409).

    from auditcapa.utils.errors import E, api_error
    return api_error(E.NOT_FOUND, "Corrective action not found")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable codes for the ``code`` field."""

    MALFORMED = "ERR_MALFORMED"                      # 400 bad JSON, 415 wrong content type
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"          # 401 missing actor headers
    FORBIDDEN = "ERR_FORBIDDEN"                      # 403
    NOT_FOUND = "ERR_NOT_FOUND"                      # 404 case, department, finding, role
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"    # 405
    CONFLICT_STATE = "ERR_CONFLICT_STATE"            # 409 stage already committed
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"    # 422 stage payload rejected
    RATE_LIMITED = "ERR_RATE_LIMITED"                # 429
    INTERNAL = "ERR_INTERNAL"                        # 500


STATUS_FOR: dict[str, int] = {
    E.MALFORMED: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT_STATE: 409,
    E.VALIDATION_INVALID: 422,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def error_body(code: str, message: str, details: dict | None = None, **extra) -> dict:
    """Build the error dict without wrapping it in a response."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    body.update(extra)
    return body


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(response, status)`` for a Flask view or error handler.

    The status defaults to the code's entry in ``STATUS_FOR`` (400 for an
    unknown code); pass ``status`` when one code covers several statuses,
    as ``E.MALFORMED`` does for 415.
    """
    return jsonify(error_body(code, message, details)), status or STATUS_FOR.get(code, 400)
