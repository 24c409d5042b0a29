"""
Notification Dispatcher & Outcome Aggregator.

Delivers one logical notification to a set of recipients through two
independent channels and reports what happened to each of them:

    1. durable record  (NotificationStore.create, one savepoint per recipient)
    2. realtime push   (RealtimeChannel.push_to_user, only after 1 committed)

Per-recipient outcome:
    SUCCESS          record stored and pushed
    PARTIAL_SUCCESS  record stored, push failed or channel unavailable
    FAILED           recipient unresolved, or record could not be stored

No outcome is ever raised to the caller of a stage transition; failures are
logged and folded into a ``DispatchSummary`` that decides between HTTP 200
and 207 Multi-Status.

Usage:
    dispatcher = NotificationDispatcher()
    result = dispatcher.dispatch(recipients, message, tenant_id=1)
    result.summary.has_successful_notifications
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from auditcapa.models import db
from auditcapa.services.notification import NotificationService
from auditcapa.services.realtime import RealtimeChannel
from auditcapa.services.recipient_resolver import UserRef

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

class DispatchStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Recipient:
    """A notification target; ``user`` is None when resolution failed."""
    label: str
    user: UserRef | None = None
    reason: str | None = None

    @classmethod
    def unresolved(cls, label: str, reason: str) -> "Recipient":
        return cls(label=label, user=None, reason=reason)


@dataclass(frozen=True)
class NotificationMessage:
    type: str
    title: str
    message: str
    link: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class DispatchOutcome:
    recipient: str
    status: DispatchStatus
    reason: str | None = None
    user_id: int | None = None
    notification_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "recipient": self.recipient,
            "status": self.status.value,
            "reason": self.reason,
            "user_id": self.user_id,
            "notification_id": self.notification_id,
        }


@dataclass(frozen=True)
class DispatchSummary:
    total: int
    successful: int
    partial_success: int
    failed: int

    @property
    def has_successful_notifications(self) -> bool:
        return self.successful + self.partial_success > 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "partial_success": self.partial_success,
            "failed": self.failed,
            "has_successful_notifications": self.has_successful_notifications,
        }


def summarize(outcomes) -> DispatchSummary:
    """Fold per-recipient outcomes into transition-level counts."""
    statuses = [o.status for o in outcomes]
    return DispatchSummary(
        total=len(statuses),
        successful=statuses.count(DispatchStatus.SUCCESS),
        partial_success=statuses.count(DispatchStatus.PARTIAL_SUCCESS),
        failed=statuses.count(DispatchStatus.FAILED),
    )


def _plural(n: int, noun: str) -> str:
    return f"{n} {noun}{'s' if n != 1 else ''}"


@dataclass
class DispatchResult:
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    @property
    def summary(self) -> DispatchSummary:
        return summarize(self.outcomes)

    @property
    def http_status(self) -> int:
        """200 when everyone was told, 207 when anyone (or everyone) was not."""
        s = self.summary
        if s.failed > 0 or not s.has_successful_notifications:
            return 207
        return 200

    def describe(self, action: str, audience: str = "notification") -> str:
        """Caller-facing sentence, e.g. ``describe("Correction requirement committed", "HOD notification")``."""
        s = self.summary
        if not s.has_successful_notifications:
            return f"{action}, but {audience} failed. Please check department configuration."
        message = f"{action} successfully."
        if s.successful:
            message += f" {_plural(s.successful, audience)} sent."
        if s.partial_success:
            message += (
                f" {_plural(s.partial_success, audience)} partially sent "
                "(database notification created, real-time notification failed)."
            )
        if s.failed:
            message += f" {_plural(s.failed, audience)} failed."
        return message

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "details": [o.to_dict() for o in self.outcomes],
        }


# ═════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """Durable-then-realtime fan-out with per-recipient isolation."""

    def __init__(self, store=None, channel=None):
        self.store = store or NotificationService
        self.channel = channel or RealtimeChannel()

    def dispatch(self, recipients, message: NotificationMessage, *, tenant_id: int) -> DispatchResult:
        result = DispatchResult()
        for recipient in recipients:
            outcome = self._deliver(recipient, message, tenant_id)
            result.outcomes.append(outcome)
            log = logger.info if outcome.status is DispatchStatus.SUCCESS else logger.warning
            log(
                "Notification %s → %s: %s%s",
                message.type,
                recipient.label,
                outcome.status.value,
                f" ({outcome.reason})" if outcome.reason else "",
                extra={
                    "tenant_id": tenant_id,
                    "event_type": message.type,
                    "dispatch_status": outcome.status.value,
                },
            )
        return result

    def _deliver(self, recipient: Recipient, message: NotificationMessage, tenant_id: int) -> DispatchOutcome:
        if recipient.user is None:
            return DispatchOutcome(
                recipient=recipient.label,
                status=DispatchStatus.FAILED,
                reason=recipient.reason or "Recipient could not be resolved",
            )

        user_id = recipient.user.id

        # 1. Durable record, isolated from every other recipient
        try:
            with db.session.begin_nested():
                record = self.store.create(
                    tenant_id=tenant_id,
                    target_user_id=user_id,
                    type=message.type,
                    title=message.title,
                    message=message.message,
                    link=message.link,
                    metadata=message.metadata,
                )
            db.session.commit()
        except Exception as exc:
            # A failed commit leaves the session unusable for the next recipient
            db.session.rollback()
            logger.warning("Durable notification for user %s failed", user_id, exc_info=True)
            return DispatchOutcome(
                recipient=recipient.label,
                status=DispatchStatus.FAILED,
                reason=str(exc) or type(exc).__name__,
                user_id=user_id,
            )

        # 2. Realtime push, best effort
        try:
            self.channel.push_to_user(user_id, record.to_dict())
        except Exception as exc:
            return DispatchOutcome(
                recipient=recipient.label,
                status=DispatchStatus.PARTIAL_SUCCESS,
                reason=f"Database notification created, but real-time notification failed: {exc}",
                user_id=user_id,
                notification_id=record.id,
            )

        return DispatchOutcome(
            recipient=recipient.label,
            status=DispatchStatus.SUCCESS,
            user_id=user_id,
            notification_id=record.id,
        )
