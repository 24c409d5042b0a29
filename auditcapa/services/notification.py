"""
Audit CAPA Platform
Notification Service.

Durable store for in-app notifications plus the inbox queries behind the
notification blueprint.  ``create`` only flushes: the dispatcher wraps it in
a savepoint per recipient and owns the commit.
"""

from datetime import datetime, timezone

from auditcapa.core.exceptions import ValidationError
from auditcapa.models import db
from auditcapa.models.notification import NOTIFICATION_TYPES, Notification
from auditcapa.services.helpers.scoped_queries import get_scoped


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, tenant_id, target_user_id, type, title, message="", link=None, metadata=None):
        """
        Create a single notification record.

        Returns:
            The flushed Notification instance (caller commits).
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {type}", details={"type": type})
        notif = Notification(
            tenant_id=tenant_id,
            target_user_id=target_user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            meta=metadata or {},
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _inbox(tenant_id, user_id, unread_only=False):
        q = Notification.query.filter_by(tenant_id=tenant_id, target_user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        return q

    @staticmethod
    def list_for_user(tenant_id, user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        q = NotificationService._inbox(tenant_id, user_id, unread_only)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def get(notification_id, tenant_id, user_id):
        return get_scoped(Notification, notification_id, tenant_id=tenant_id, target_user_id=user_id)

    @staticmethod
    def unread_count(tenant_id, user_id):
        """Return count of unread notifications."""
        return NotificationService._inbox(tenant_id, user_id, unread_only=True).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_ids, tenant_id, user_id):
        """Mark the given notifications of *user_id* as read; returns how many changed."""
        count = 0
        for nid in notification_ids:
            notif = get_scoped(Notification, nid, tenant_id=tenant_id, target_user_id=user_id)
            if not notif.is_read:
                notif.mark_read()
                count += 1
        db.session.commit()
        return count

    @staticmethod
    def mark_all_read(tenant_id, user_id):
        """Mark all notifications for a user as read."""
        q = NotificationService._inbox(tenant_id, user_id, unread_only=True)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count
