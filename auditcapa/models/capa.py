"""
Audit CAPA Platform
CAPA case domain model.

Models:
    - CorrectiveAction: anchored 1:1 on a NonConformity
    - PreventiveAction: anchored 1:1 on an ImprovementOpportunity

Both share one column layout (CapaCaseMixin) and one lifecycle:

    OPEN → IN_PROGRESS → COMPLETED → VERIFIED
              ↑                          │
              └──── effectiveness = NO ──┘

Stage fields are JSON columns holding the ``to_dict()`` of the matching
dataclass in ``auditcapa.services.capa_stages``; they are only ever written
through the lifecycle functions in ``auditcapa.services.capa_lifecycle``.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from auditcapa.models import db
from auditcapa.models.audit import ENTITY_CORRECTIVE, ENTITY_PREVENTIVE
from auditcapa.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_OPEN = "OPEN"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
STATUS_VERIFIED = "VERIFIED"

CAPA_STATUSES = {STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_VERIFIED}

KIND_CORRECTIVE = "corrective"
KIND_PREVENTIVE = "preventive"


def _now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class CapaCaseMixin:
    """Columns and helpers shared by both CAPA case tables."""

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_OPEN, index=True)

    # Stage sub-states (JSON snapshots of capa_stages dataclasses)
    requirement = db.Column(db.JSON, nullable=True)
    proposed_action = db.Column(db.JSON, nullable=True)
    appropriateness_review = db.Column(db.JSON, nullable=True)
    follow_up_action = db.Column(db.JSON, nullable=True)
    action_effectiveness = db.Column(db.JSON, nullable=True)

    mr_notified = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    @declared_attr
    def created_by_id(cls):
        return db.Column(
            db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            comment="Auditor who opened the case",
        )

    @declared_attr
    def assigned_to_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Subclasses set these
    kind = None
    entity_type = None
    companion_attr = None
    link_prefix = None

    @property
    def companion(self):
        return getattr(self, self.companion_attr)

    @property
    def finding(self):
        companion = self.companion
        return companion.finding if companion is not None else None

    @property
    def link(self) -> str:
        """Front-end route of the case, keyed by its companion record."""
        return f"{self.link_prefix}/{self.companion.id}"

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def to_dict(self):
        finding = self.finding
        return {
            "id": self.id,
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            f"{self.companion_attr}_id": self.companion.id if self.companion else None,
            "finding_id": finding.id if finding else None,
            "department": finding.department if finding else None,
            "title": self.title,
            "status": self.status,
            "created_by_id": self.created_by_id,
            "assigned_to_id": self.assigned_to_id,
            "requirement": self.requirement,
            "proposed_action": self.proposed_action,
            "appropriateness_review": self.appropriateness_review,
            "follow_up_action": self.follow_up_action,
            "action_effectiveness": self.action_effectiveness,
            "mr_notified": self.mr_notified,
            "archived_at": _iso(self.archived_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: {self.status}>"


class CorrectiveAction(CapaCaseMixin, TenantModel):
    """CAPA case for a non-conformity."""

    __tablename__ = "corrective_actions"

    non_conformity_id = db.Column(
        db.Integer, db.ForeignKey("non_conformities.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )

    non_conformity = db.relationship("NonConformity", back_populates="corrective_action")
    created_by = db.relationship("User", foreign_keys="CorrectiveAction.created_by_id")
    assigned_to = db.relationship("User", foreign_keys="CorrectiveAction.assigned_to_id")

    kind = KIND_CORRECTIVE
    entity_type = ENTITY_CORRECTIVE
    companion_attr = "non_conformity"
    link_prefix = "/auditors/corrective-actions"


class PreventiveAction(CapaCaseMixin, TenantModel):
    """CAPA case for an improvement opportunity."""

    __tablename__ = "preventive_actions"

    improvement_opportunity_id = db.Column(
        db.Integer, db.ForeignKey("improvement_opportunities.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )

    improvement_opportunity = db.relationship(
        "ImprovementOpportunity", back_populates="preventive_action",
    )
    created_by = db.relationship("User", foreign_keys="PreventiveAction.created_by_id")
    assigned_to = db.relationship("User", foreign_keys="PreventiveAction.assigned_to_id")

    kind = KIND_PREVENTIVE
    entity_type = ENTITY_PREVENTIVE
    companion_attr = "improvement_opportunity"
    link_prefix = "/auditors/preventive-actions"


CASE_MODELS = {
    KIND_CORRECTIVE: CorrectiveAction,
    KIND_PREVENTIVE: PreventiveAction,
}
