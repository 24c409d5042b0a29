"""
Audit CAPA Platform
Notification model: the durable half of every hand-off.

One row per recipient per event. The row is written before any realtime
push is attempted, so a recipient who was offline still finds it in the
inbox; ``is_read`` / ``read_at`` are the only fields changed afterwards.
"""

from datetime import datetime, timezone

from auditcapa.models import db
from auditcapa.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "CORRECTIVE_ACTION_COMMITTED",
    "PREVENTIVE_ACTION_OBSERVATION_COMMITTED",
    "ROOT_CAUSE_ANALYSIS_SUBMITTED",
    "PREVENTIVE_ROOT_CAUSE_SUBMITTED",
    "APPROPRIATENESS_REVIEWED",
    "CORRECTIVE_ACTION_MR_NOTIFICATION",
    "PREVENTIVE_ACTION_MR_NOTIFICATION",
}


class Notification(TenantModel):

    __tablename__ = "notifications"
    __table_args__ = (
        # Inbox queries: one user, optionally unread only
        TenantModel.tenant_composite_index("notifications", "target_user_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(60), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    link = db.Column(db.String(500), nullable=True)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, default=dict)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "target_user_id": self.target_user_id,
            "link": self.link,
            "metadata": self.meta or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
