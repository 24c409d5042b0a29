"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Two families:
  - Rejections (NotFoundError, ValidationError, ConflictError,
    PermissionDenied) are raised before any mutation and leave the
    CAPA case untouched.
  - Side-channel failures (NoResponsiblePartyError, DeliveryError) never
    reach the caller of a stage transition; the dispatcher catches them and
    records a FAILED / PARTIAL_SUCCESS outcome instead.

Usage:
    from auditcapa.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="CorrectiveAction", resource_id=42)
    raise ValidationError("comment is required", details={"comment": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access
    attempts; a 404 does not confirm the resource exists elsewhere.

    Args:
        resource: Human-readable model/entity name (e.g. "Department").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional - the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a record.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose current value blocks the operation.
        value: The conflicting value (for logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field} is already set"
        if value is not None:
            msg += f" ({value!r})"
        super().__init__(msg)


class PermissionDenied(Exception):
    """Raised when the acting user may not perform a stage transition.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: int | None, action: str, reason: str | None = None) -> None:
        self.user_id = user_id
        self.action = action
        msg = f"User {user_id} may not {action}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NoResponsiblePartyError(Exception):
    """Raised when a hand-off has nobody to hand off to (e.g. department without head).

    Recoverable: the state change has been (or will be) committed; the
    dispatcher turns this into a FAILED outcome for that recipient.
    """

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"No responsible party for {target}: {reason}")


class DeliveryError(Exception):
    """Raised when one notification channel fails for one recipient.

    Args:
        channel: "durable" or "realtime".
        reason: Underlying error text.
    """

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} delivery failed: {reason}")
