"""
CAPA Case Lifecycle - state mutations.

The authoritative half of every stage transition: each ``apply_*`` function
takes an already-loaded case and an already-validated stage payload
(``auditcapa.services.capa_stages``), mutates the case in place and returns
the ``{field: {"old", "new"}}`` diff for the audit trail.  Nothing here
touches the session, resolves recipients or sends notifications; the
orchestrator in ``capa_workflow`` does that around these calls.

Status rules:
    commit requirement          → IN_PROGRESS
    follow-up FULLY completed   → COMPLETED
    follow-up PARTIALLY         → IN_PROGRESS
    follow-up NO_ACTION_TAKEN   → OPEN
    effectiveness YES           → VERIFIED
    effectiveness NO            → IN_PROGRESS   (re-open)
"""

from auditcapa.core.exceptions import ConflictError
from auditcapa.models.capa import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    STATUS_VERIFIED,
)
from auditcapa.services.capa_stages import (
    ActionEffectiveness,
    AppropriatenessReview,
    FollowUpAction,
    FollowUpOutcome,
    ReviewResponse,
)

FOLLOW_UP_STATUS = {
    FollowUpOutcome.ACTION_FULLY_COMPLETED: STATUS_COMPLETED,
    FollowUpOutcome.ACTION_PARTIALLY_COMPLETED: STATUS_IN_PROGRESS,
    FollowUpOutcome.NO_ACTION_TAKEN: STATUS_OPEN,
}

EFFECTIVENESS_STATUS = {
    ReviewResponse.YES: STATUS_VERIFIED,
    ReviewResponse.NO: STATUS_IN_PROGRESS,
}


def _set(case, field: str, value, diff: dict) -> None:
    old = getattr(case, field)
    if old != value:
        diff[field] = {"old": old, "new": value}
    setattr(case, field, value)


def apply_commit_requirement(case, requirement) -> dict:
    """Record the committed requirement; it can never be replaced afterwards."""
    if case.requirement:
        raise ConflictError(type(case).__name__, "requirement")
    diff: dict = {}
    _set(case, "requirement", requirement.to_dict(), diff)
    _set(case, "status", STATUS_IN_PROGRESS, diff)
    return diff


def apply_proposed_action(case, proposal) -> dict:
    """Store a (re)submitted proposal and invalidate any review of the previous one."""
    diff: dict = {}
    _set(case, "proposed_action", proposal.to_dict(), diff)
    _set(case, "appropriateness_review", None, diff)
    return diff


def apply_appropriateness_review(case, review: AppropriatenessReview) -> dict:
    diff: dict = {}
    _set(case, "appropriateness_review", review.to_dict(), diff)
    return diff


def apply_follow_up_action(case, follow_up: FollowUpAction) -> dict:
    diff: dict = {}
    _set(case, "follow_up_action", follow_up.to_dict(), diff)
    _set(case, "status", FOLLOW_UP_STATUS[follow_up.action], diff)
    return diff


def apply_action_effectiveness(case, effectiveness: ActionEffectiveness) -> dict:
    # proposed_action / follow_up_action are left as they are on re-open;
    # the next cycle overwrites them and the audit diff keeps the old values.
    diff: dict = {}
    _set(case, "action_effectiveness", effectiveness.to_dict(), diff)
    _set(case, "status", EFFECTIVENESS_STATUS[effectiveness.response], diff)
    return diff


def apply_mr_notified(case) -> dict:
    diff: dict = {}
    _set(case, "mr_notified", True, diff)
    return diff


def apply_assignment(case, assignee_id) -> dict:
    """Status is untouched; only who may answer for the department changes."""
    diff: dict = {}
    _set(case, "assigned_to_id", assignee_id, diff)
    return diff
