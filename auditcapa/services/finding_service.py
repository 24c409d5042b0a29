"""
Finding Categorization Service.

Categorizing a finding is the only way a CAPA case comes into existence:

    NON_CONFORMITY → NonConformity + CorrectiveAction
    IMPROVEMENT    → ImprovementOpportunity + PreventiveAction
    COMPLIANCE     → ComplianceRecord (no case)

The category write, the companion insert and the case insert share one
transaction; if any of them fails all are rolled back, so a finding is never
left categorized without its case.  Re-running categorization is safe: it
only creates what is missing (which also repairs findings categorized before
this guarantee existed).  Moving a finding away from a CAPA category archives
the now-orphaned case; moving it back restores it.

Usage:
    from auditcapa.services.finding_service import categorize_finding

    result = categorize_finding(finding_id, "NON_CONFORMITY", tenant_id=1, actor_id=7)
    result["case"].status   # "OPEN"
"""

import logging
from datetime import UTC, datetime

from auditcapa.core.exceptions import PermissionDenied, ValidationError
from auditcapa.models import db
from auditcapa.models.audit import ENTITY_FINDING, write_audit
from auditcapa.models.auth import User
from auditcapa.models.capa import CorrectiveAction, PreventiveAction
from auditcapa.models.finding import (
    CATEGORY_COMPLIANCE,
    CATEGORY_IMPROVEMENT,
    CATEGORY_NON_CONFORMITY,
    FINDING_CATEGORIES,
    NC_SEVERITIES,
    NC_TYPES,
    ComplianceRecord,
    Finding,
    ImprovementOpportunity,
    NonConformity,
)
from auditcapa.services.helpers.scoped_queries import get_scoped, get_scoped_or_none

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Non-conformity auto classification
# ═════════════════════════════════════════════════════════════════════════════

_OBSERVATION_KEYWORDS = (
    "observation", "note", "comment", "suggestion", "recommendation",
    "improvement", "enhancement", "optimization", "better", "best practice",
    "opportunity", "potential", "consider", "review", "evaluate",
)
_MINOR_KEYWORDS = (
    "minor", "small", "slight", "trivial", "insignificant",
    "cosmetic", "appearance", "formatting", "documentation", "paperwork",
    "procedural", "process", "routine", "standard", "normal",
)
_HIGH_SEVERITY_KEYWORDS = (
    "critical", "urgent", "immediate", "emergency", "hazard", "danger",
    "threat", "breach", "violation", "failure", "breakdown", "safety",
    "security", "compliance", "regulatory", "legal",
)
_LOW_SEVERITY_KEYWORDS = (
    "minor", "small", "slight", "trivial", "insignificant", "cosmetic",
    "appearance", "suggestion", "recommendation", "improvement",
)


def auto_classify_non_conformity(title: str | None, description: str | None) -> tuple[str, str]:
    """Keyword-based (type, severity) guess for a non-conformity.

    Type: OBSERVATION keywords win, then MINOR, else MAJOR.
    Severity: HIGH keywords win, then LOW, else MEDIUM.
    An OBSERVATION is never HIGH.
    """
    text = f"{title or ''} {description or ''}".lower()

    if any(k in text for k in _OBSERVATION_KEYWORDS):
        nc_type = "OBSERVATION"
    elif any(k in text for k in _MINOR_KEYWORDS):
        nc_type = "MINOR"
    else:
        nc_type = "MAJOR"

    if any(k in text for k in _HIGH_SEVERITY_KEYWORDS):
        severity = "HIGH"
    elif any(k in text for k in _LOW_SEVERITY_KEYWORDS):
        severity = "LOW"
    else:
        severity = "MEDIUM"

    if nc_type == "OBSERVATION" and severity == "HIGH":
        severity = "MEDIUM"
    return nc_type, severity


# ═════════════════════════════════════════════════════════════════════════════
# Companion + case creation
# ═════════════════════════════════════════════════════════════════════════════

def _normalise(value, allowed, field):
    if value is None or value == "":
        return None
    value = str(value).strip().upper()
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of {', '.join(sorted(allowed))}",
            details={field: value},
        )
    return value


def _ensure_non_conformity(finding, actor_id, nc_type, nc_severity):
    nc = finding.non_conformity
    if nc is None:
        auto_type, auto_severity = auto_classify_non_conformity(finding.title, finding.description)
        nc = NonConformity(
            tenant_id=finding.tenant_id,
            finding=finding,
            created_by_id=finding.created_by_id,
            title=finding.title,
            description=finding.description,
            type=nc_type or auto_type,
            severity=nc_severity or auto_severity,
            status="OPEN",
        )
        db.session.add(nc)
        logger.info("Created NonConformity for finding %s (%s/%s)", finding.id, nc.type, nc.severity)
    else:
        if nc_type:
            nc.type = nc_type
        if nc_severity:
            nc.severity = nc_severity

    case = nc.corrective_action
    if case is None:
        case = CorrectiveAction(
            tenant_id=finding.tenant_id,
            non_conformity=nc,
            title=finding.title,
            created_by_id=actor_id or finding.created_by_id,
        )
        db.session.add(case)
    elif case.is_archived:
        case.archived_at = None
    return nc, case


def _ensure_improvement(finding, actor_id):
    io = finding.improvement_opportunity
    if io is None:
        io = ImprovementOpportunity(
            tenant_id=finding.tenant_id,
            finding=finding,
            created_by_id=finding.created_by_id,
            opportunity=finding.title or "Improvement Opportunity",
            status="OPEN",
        )
        db.session.add(io)
        logger.info("Created ImprovementOpportunity for finding %s", finding.id)

    case = io.preventive_action
    if case is None:
        case = PreventiveAction(
            tenant_id=finding.tenant_id,
            improvement_opportunity=io,
            title=io.opportunity,
            created_by_id=actor_id or finding.created_by_id,
        )
        db.session.add(case)
    elif case.is_archived:
        case.archived_at = None
    return io, case


def _ensure_compliance(finding):
    record = finding.compliance_record
    if record is None:
        record = ComplianceRecord(
            tenant_id=finding.tenant_id,
            finding=finding,
            created_by_id=finding.created_by_id,
            status="COMPLIANT",
        )
        db.session.add(record)
    return record


def _archive_other_cases(finding, keep):
    now = datetime.now(UTC)
    archived = []
    candidates = (
        finding.non_conformity.corrective_action if finding.non_conformity else None,
        finding.improvement_opportunity.preventive_action if finding.improvement_opportunity else None,
    )
    for case in candidates:
        if case is not None and case is not keep and not case.is_archived:
            case.archived_at = now
            archived.append(f"{case.entity_type}:{case.id}")
    return archived


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def categorize_finding(
    finding_id: int,
    category: str,
    *,
    tenant_id: int,
    actor_id: int | None = None,
    nc_type: str | None = None,
    nc_severity: str | None = None,
) -> dict:
    """Set the category of a finding and create its companion record and case.

    Returns:
        {"finding", "category", "previous_category", "companion", "case", "archived"}

    Raises:
        ValidationError: unknown category / type / severity.
        NotFoundError: finding not in tenant.
        PermissionDenied: actor is not an active user of the tenant.
    """
    category = _normalise(category, FINDING_CATEGORIES, "category")
    if category is None:
        raise ValidationError("category is required", details={"category": "is required"})
    nc_type = _normalise(nc_type, NC_TYPES, "nc_type")
    nc_severity = _normalise(nc_severity, NC_SEVERITIES, "nc_severity")

    actor = get_scoped_or_none(User, actor_id, tenant_id=tenant_id) if actor_id else None
    if actor_id and (actor is None or not actor.is_active):
        raise PermissionDenied(actor_id, "categorize findings", "not an active user of this tenant")

    finding = get_scoped(Finding, finding_id, tenant_id=tenant_id, for_update=True)
    previous = finding.category

    try:
        finding.category = category
        companion = case = None
        if category == CATEGORY_NON_CONFORMITY:
            companion, case = _ensure_non_conformity(finding, actor_id, nc_type, nc_severity)
        elif category == CATEGORY_IMPROVEMENT:
            companion, case = _ensure_improvement(finding, actor_id)
        elif category == CATEGORY_COMPLIANCE:
            companion = _ensure_compliance(finding)
        archived = _archive_other_cases(finding, keep=case)
        db.session.flush()

        if previous != category or archived:
            try:
                with db.session.begin_nested():
                    write_audit(
                        entity_type=ENTITY_FINDING,
                        entity_id=finding.id,
                        action="finding.categorize",
                        tenant_id=tenant_id,
                        actor_user_id=actor_id,
                        diff={
                            "category": {"old": previous, "new": category},
                            "archived_cases": archived,
                        },
                    )
            except Exception:
                logger.warning("Audit log failed for finding.categorize - main flow unaffected", exc_info=True)

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Categorization of finding %s rolled back", finding_id)
        raise

    logger.info(
        "Finding %s categorized %s → %s (case=%s)",
        finding.id, previous, category, case.id if case is not None else None,
        extra={"tenant_id": tenant_id, "event_type": "finding.categorize"},
    )
    return {
        "finding": finding,
        "category": category,
        "previous_category": previous,
        "companion": companion,
        "case": case,
        "archived": archived,
    }
