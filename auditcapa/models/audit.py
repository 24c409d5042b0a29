"""
Audit CAPA Platform
Audit trail model.

Every stage transition and finding categorization appends one ``AuditLog``
row carrying ``{field: {"old": ..., "new": ...}}`` for the fields it
changed. A case holds only its current attempt at each stage; earlier
attempts after a re-open are recovered from here with ``stage_history``.
"""

from datetime import UTC, datetime

from auditcapa.models import db

ENTITY_CORRECTIVE = "corrective_action"
ENTITY_PREVENTIVE = "preventive_action"
ENTITY_FINDING = "finding"

AUDIT_ACTIONS = {
    "capa.commit_requirement",
    "capa.submit_proposed_action",
    "capa.submit_appropriateness_review",
    "capa.submit_follow_up_action",
    "capa.submit_action_effectiveness",
    "capa.notify_management_representative",
    "capa.archive",
    "capa.assign",
    "finding.categorize",
}


class AuditLog(db.Model):
    """Append-only; rows are never updated or deleted by the application."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_tenant_action", "tenant_id", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="SET NULL"), index=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    diff = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(*, entity_type, entity_id, action, tenant_id=None, actor_user_id=None, diff=None):
    """Add one row and flush; the caller owns the transaction."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff=diff or {},
    )
    db.session.add(log)
    db.session.flush()
    return log


def history_for(entity_type, entity_id):
    """Audit rows of one entity, oldest first."""
    return (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .all()
    )


def stage_history(entity_type, entity_id, field):
    """Every value *field* has held, oldest first.

    Built from the diffs, so a stage that was cleared by a re-open (proposed
    action replaced, review wiped) still shows its earlier content. Clearing
    itself is not an attempt and leaves no entry.
    """
    values = []
    first = True
    for log in history_for(entity_type, entity_id):
        change = (log.diff or {}).get(field)
        if change is None:
            continue
        # A value that predates the trail (set before auditing) is its first attempt
        if first and change.get("old") is not None:
            values.append(change["old"])
        first = False
        if change.get("new") is not None:
            values.append(change["new"])
    return values
