"""
CAPA stage payloads.

Each stage field on a CAPA case (requirement, proposed_action,
appropriateness_review, follow_up_action, action_effectiveness) has exactly
one shape, expressed here as a frozen dataclass.  Request payloads are parsed
with ``from_payload`` at the transition boundary - a missing or malformed
field raises ``ValidationError`` before the case is touched - and stored via
``to_dict`` in the case's JSON column.

Usage:
    from auditcapa.services.capa_stages import AppropriatenessReview

    review = AppropriatenessReview.from_payload(
        {"response": "NO", "comment": "Root cause too shallow"}, reviewer_id=7,
    )
    case.appropriateness_review = review.to_dict()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from enum import Enum

from auditcapa.core.exceptions import ValidationError


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class ReviewResponse(str, Enum):
    YES = "YES"
    NO = "NO"


class FollowUpOutcome(str, Enum):
    ACTION_FULLY_COMPLETED = "ACTION_FULLY_COMPLETED"
    ACTION_PARTIALLY_COMPLETED = "ACTION_PARTIALLY_COMPLETED"
    NO_ACTION_TAKEN = "NO_ACTION_TAKEN"


class DerivedStatus(str, Enum):
    """Stage-local closure flag shown next to follow-up and effectiveness."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# ═════════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═════════════════════════════════════════════════════════════════════════════

def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _ensure_mapping(payload, stage: str) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(f"{stage} must be an object", details={stage: "expected object"})
    return payload


def _text(payload: dict, key: str, errors: dict, *, required: bool = True) -> str:
    value = payload.get(key)
    if value is None:
        value = ""
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return ""
    value = value.strip()
    if required and not value:
        errors[key] = "is required"
    return value


def _enum(enum_cls, payload: dict, key: str, errors: dict):
    raw = payload.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        errors[key] = "is required"
        return None
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        errors[key] = f"must be one of {', '.join(m.value for m in enum_cls)}"
        return None


def _iso_date(payload: dict, key: str, errors: dict) -> str:
    raw = _text(payload, key, errors)
    if not raw:
        return ""
    try:
        # Accept full timestamps from date pickers, keep the date part.
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        errors[key] = "must be an ISO date (YYYY-MM-DD)"
        return ""


def _raise_if(errors: dict, stage: str) -> None:
    if errors:
        fields = ", ".join(f"{k} {v}" for k, v in errors.items())
        raise ValidationError(f"Invalid {stage}: {fields}", details=errors)


class _Stage:
    """to_dict / from_dict shared by every stage dataclass."""

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: dict | None):
        """Rehydrate a stored stage field; returns None for an empty column."""
        if not data:
            return None
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


# ═════════════════════════════════════════════════════════════════════════════
# Stage 1 - requirement
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CorrectionRequirement(_Stage):
    """Requirement committed by the auditor on a corrective action."""
    area: str
    requirement: str
    category: str
    auditor_name: str
    committed_by: int | None
    committed_at: str

    @classmethod
    def from_payload(cls, payload, *, committed_by: int | None, auditor_name: str = ""):
        payload = _ensure_mapping(payload, "requirement")
        errors: dict = {}
        area = _text(payload, "area", errors)
        requirement = _text(payload, "requirement", errors)
        category = _text(payload, "category", errors, required=False)
        _raise_if(errors, "requirement")
        return cls(
            area=area,
            requirement=requirement,
            category=category,
            auditor_name=auditor_name,
            committed_by=committed_by,
            committed_at=_now_iso(),
        )

    @property
    def headline(self) -> str:
        return self.requirement


@dataclass(frozen=True)
class ObservationRequirement(_Stage):
    """Observation committed by the auditor on a preventive action."""
    area: str
    observation: str
    evidence: str
    auditor_name: str
    committed_by: int | None
    committed_at: str

    @classmethod
    def from_payload(cls, payload, *, committed_by: int | None, auditor_name: str = ""):
        payload = _ensure_mapping(payload, "requirement")
        errors: dict = {}
        area = _text(payload, "area", errors)
        observation = _text(payload, "observation", errors)
        evidence = _text(payload, "evidence", errors, required=False)
        _raise_if(errors, "observation requirement")
        return cls(
            area=area,
            observation=observation,
            evidence=evidence,
            auditor_name=auditor_name,
            committed_by=committed_by,
            committed_at=_now_iso(),
        )

    @property
    def headline(self) -> str:
        return self.observation


# ═════════════════════════════════════════════════════════════════════════════
# Stage 2 - proposed action
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CorrectiveProposal(_Stage):
    root_cause: str
    correction: str
    corrective_action: str
    completion_date: str
    auditee: str
    submitted_by: int | None
    submitted_at: str

    @classmethod
    def from_payload(cls, payload, *, submitted_by: int | None):
        payload = _ensure_mapping(payload, "proposed_action")
        errors: dict = {}
        values = {
            "root_cause": _text(payload, "root_cause", errors),
            "correction": _text(payload, "correction", errors),
            "corrective_action": _text(payload, "corrective_action", errors),
            "completion_date": _iso_date(payload, "completion_date", errors),
            "auditee": _text(payload, "auditee", errors),
        }
        _raise_if(errors, "proposed action")
        return cls(**values, submitted_by=submitted_by, submitted_at=_now_iso())

    @property
    def action_text(self) -> str:
        return self.corrective_action

    @property
    def correction_text(self) -> str:
        return self.correction


@dataclass(frozen=True)
class PreventiveProposal(_Stage):
    root_cause: str
    prevention: str
    preventive_action: str
    completion_date: str
    auditee: str
    submitted_by: int | None
    submitted_at: str

    @classmethod
    def from_payload(cls, payload, *, submitted_by: int | None):
        payload = _ensure_mapping(payload, "proposed_action")
        errors: dict = {}
        values = {
            "root_cause": _text(payload, "root_cause", errors),
            "prevention": _text(payload, "prevention", errors),
            "preventive_action": _text(payload, "preventive_action", errors),
            "completion_date": _iso_date(payload, "completion_date", errors),
            "auditee": _text(payload, "auditee", errors),
        }
        _raise_if(errors, "proposed action")
        return cls(**values, submitted_by=submitted_by, submitted_at=_now_iso())

    @property
    def action_text(self) -> str:
        return self.preventive_action

    @property
    def correction_text(self) -> str:
        return self.prevention


# ═════════════════════════════════════════════════════════════════════════════
# Stage 3 - appropriateness review
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AppropriatenessReview(_Stage):
    """Auditor's verdict on the proposed action.

    ``comment`` is mandatory when the proposal is rejected (NO) and is not
    kept when it is accepted (YES).
    """
    reviewer_id: int | None
    response: ReviewResponse
    comment: str | None
    responded_at: str

    @classmethod
    def from_payload(cls, payload, *, reviewer_id: int | None):
        payload = _ensure_mapping(payload, "appropriateness_review")
        errors: dict = {}
        response = _enum(ReviewResponse, payload, "response", errors)
        comment = _text(payload, "comment", errors, required=False)
        if response is ReviewResponse.NO and not comment and "comment" not in errors:
            errors["comment"] = "is required when response is NO"
        _raise_if(errors, "appropriateness review")
        return cls(
            reviewer_id=reviewer_id,
            response=response,
            comment=comment if response is ReviewResponse.NO else None,
            responded_at=_now_iso(),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Stage 4 - follow-up
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FollowUpAction(_Stage):
    action: FollowUpOutcome
    derived_status: DerivedStatus
    updated_by: int | None
    updated_at: str

    @classmethod
    def from_payload(cls, payload, *, updated_by: int | None):
        payload = _ensure_mapping(payload, "follow_up_action")
        errors: dict = {}
        action = _enum(FollowUpOutcome, payload, "action", errors)
        _raise_if(errors, "follow-up action")
        derived = (
            DerivedStatus.CLOSED
            if action is FollowUpOutcome.ACTION_FULLY_COMPLETED
            else DerivedStatus.OPEN
        )
        return cls(action=action, derived_status=derived, updated_by=updated_by, updated_at=_now_iso())


# ═════════════════════════════════════════════════════════════════════════════
# Stage 5 - effectiveness
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ActionEffectiveness(_Stage):
    response: ReviewResponse
    details: str
    derived_status: DerivedStatus
    reviewer_id: int | None
    reviewed_at: str

    @classmethod
    def from_payload(cls, payload, *, reviewer_id: int | None):
        payload = _ensure_mapping(payload, "action_effectiveness")
        errors: dict = {}
        response = _enum(ReviewResponse, payload, "response", errors)
        details = _text(payload, "details", errors)
        _raise_if(errors, "action effectiveness")
        derived = DerivedStatus.CLOSED if response is ReviewResponse.YES else DerivedStatus.OPEN
        return cls(
            response=response,
            details=details,
            derived_status=derived,
            reviewer_id=reviewer_id,
            reviewed_at=_now_iso(),
        )


# Per-kind shapes of the two kind-specific stages
REQUIREMENT_TYPES = {
    "corrective": CorrectionRequirement,
    "preventive": ObservationRequirement,
}

PROPOSAL_TYPES = {
    "corrective": CorrectiveProposal,
    "preventive": PreventiveProposal,
}
