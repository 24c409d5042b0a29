"""
Audit CAPA Platform
Audit execution domain model.

Models:
    - Audit: the audit engagement that produced findings
    - Finding: one observation, later categorized
    - NonConformity: companion of a NON_CONFORMITY finding (anchors a CorrectiveAction)
    - ImprovementOpportunity: companion of an IMPROVEMENT finding (anchors a PreventiveAction)
    - ComplianceRecord: companion of a COMPLIANCE finding (no CAPA case)
"""

from datetime import datetime, timezone

from auditcapa.models import db
from auditcapa.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

CATEGORY_COMPLIANCE = "COMPLIANCE"
CATEGORY_IMPROVEMENT = "IMPROVEMENT"
CATEGORY_NON_CONFORMITY = "NON_CONFORMITY"

FINDING_CATEGORIES = {CATEGORY_COMPLIANCE, CATEGORY_IMPROVEMENT, CATEGORY_NON_CONFORMITY}

NC_TYPES = {"MAJOR", "MINOR", "OBSERVATION"}
NC_SEVERITIES = {"LOW", "MEDIUM", "HIGH", "CRITICAL"}


def _now():
    return datetime.now(timezone.utc)


class Audit(TenantModel):
    """Audit engagement; only the fields the CAPA summaries need."""

    __tablename__ = "audits"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    audit_number = db.Column(db.String(50), default="")
    program_name = db.Column(db.String(300), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    findings = db.relationship("Finding", back_populates="audit", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "audit_number": self.audit_number,
            "program_name": self.program_name,
        }


class Finding(TenantModel):
    """
    Audit finding.

    ``category`` stays NULL until categorization. A NON_CONFORMITY or
    IMPROVEMENT finding always carries exactly one companion record and one
    CAPA case; both are written in the categorization transaction.
    """

    __tablename__ = "findings"
    __table_args__ = (
        TenantModel.tenant_composite_index("findings", "category"),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    department = db.Column(db.String(200), nullable=True, comment="Primary department name")
    secondary_departments = db.Column(
        db.JSON, default=list, comment="Further department names the finding spans",
    )
    category = db.Column(db.String(30), nullable=True, index=True)
    status = db.Column(db.String(20), default="PENDING")
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    audit = db.relationship("Audit", back_populates="findings")
    non_conformity = db.relationship("NonConformity", back_populates="finding", uselist=False)
    improvement_opportunity = db.relationship(
        "ImprovementOpportunity", back_populates="finding", uselist=False,
    )
    compliance_record = db.relationship("ComplianceRecord", back_populates="finding", uselist=False)

    @property
    def departments(self) -> list[str]:
        """Primary plus secondary department names, de-duplicated, order kept."""
        names = []
        for name in [self.department, *(self.secondary_departments or [])]:
            name = (name or "").strip()
            if name and name not in names:
                names.append(name)
        return names

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "audit_id": self.audit_id,
            "created_by_id": self.created_by_id,
            "department": self.department,
            "departments": self.departments,
            "category": self.category,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "non_conformity_id": self.non_conformity.id if self.non_conformity else None,
            "improvement_opportunity_id": (
                self.improvement_opportunity.id if self.improvement_opportunity else None
            ),
            "compliance_record_id": self.compliance_record.id if self.compliance_record else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Finding {self.id}: {self.category or 'UNCATEGORIZED'}>"


class NonConformity(TenantModel):
    __tablename__ = "non_conformities"

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(
        db.Integer, db.ForeignKey("findings.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    type = db.Column(db.String(20), nullable=False, default="MAJOR")
    severity = db.Column(db.String(20), nullable=False, default="MEDIUM")
    status = db.Column(db.String(20), default="OPEN")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    finding = db.relationship("Finding", back_populates="non_conformity")
    corrective_action = db.relationship(
        "CorrectiveAction", back_populates="non_conformity", uselist=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "finding_id": self.finding_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "severity": self.severity,
            "status": self.status,
        }


class ImprovementOpportunity(TenantModel):
    __tablename__ = "improvement_opportunities"

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(
        db.Integer, db.ForeignKey("findings.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    opportunity = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), default="OPEN")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    finding = db.relationship("Finding", back_populates="improvement_opportunity")
    preventive_action = db.relationship(
        "PreventiveAction", back_populates="improvement_opportunity", uselist=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "finding_id": self.finding_id,
            "opportunity": self.opportunity,
            "status": self.status,
        }


class ComplianceRecord(TenantModel):
    __tablename__ = "compliance_records"

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(
        db.Integer, db.ForeignKey("findings.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), default="COMPLIANT")
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    finding = db.relationship("Finding", back_populates="compliance_record")

    def to_dict(self):
        return {"id": self.id, "finding_id": self.finding_id, "status": self.status}
