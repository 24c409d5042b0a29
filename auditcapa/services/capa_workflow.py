"""
CAPA Workflow - stage transition orchestrator.

One engine drives both case kinds (corrective / preventive).  Every
cross-role transition runs in two explicit phases:

    1. apply   - validate actor + payload, resolve recipients, lock the case
                 row, mutate it (capa_lifecycle), write the audit row, COMMIT.
    2. dispatch - hand the notification to NotificationDispatcher; per-recipient
                 outcomes are aggregated and returned, never raised.

Anything that would block a valid business change (ValidationError,
NotFoundError, ConflictError, PermissionDenied) is raised during phase 1
before the case is mutated.  Anything that goes wrong while telling people
about it ends up in the returned DispatchResult.

Usage:
    from auditcapa.services.capa_workflow import CapaWorkflow

    wf = CapaWorkflow("corrective", tenant_id=1)
    result = wf.commit_requirement(case_id, {"area": "...", "requirement": "..."}, actor_id=7)
    result.case.status                    # "IN_PROGRESS"
    result.dispatch.summary.failed        # 1 if a department had no HOD
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from flask import current_app, has_app_context

from auditcapa.core.exceptions import (
    ConflictError,
    NoResponsiblePartyError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from auditcapa.models import db
from auditcapa.models.audit import history_for, stage_history, write_audit
from auditcapa.models.auth import User
from auditcapa.models.capa import CAPA_STATUSES, CASE_MODELS, KIND_CORRECTIVE, KIND_PREVENTIVE
from auditcapa.models.finding import Finding
from auditcapa.services import capa_lifecycle
from auditcapa.services.capa_stages import (
    PROPOSAL_TYPES,
    REQUIREMENT_TYPES,
    ActionEffectiveness,
    AppropriatenessReview,
    FollowUpAction,
    FollowUpOutcome,
)
from auditcapa.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from auditcapa.services.notification_dispatcher import (
    DispatchResult,
    NotificationDispatcher,
    NotificationMessage,
    Recipient,
)
from auditcapa.services.recipient_resolver import RecipientResolver, UserRef

logger = logging.getLogger(__name__)

DEFAULT_MR_ROLE_NAME = "MR"

FOLLOW_UP_LABELS = {
    FollowUpOutcome.ACTION_FULLY_COMPLETED.value: "Action fully completed",
    FollowUpOutcome.ACTION_PARTIALLY_COMPLETED.value: "Action partially completed",
    FollowUpOutcome.NO_ACTION_TAKEN.value: "No action taken",
}


# ═════════════════════════════════════════════════════════════════════════════
# Per-kind wording
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class KindProfile:
    noun: str
    subject: str
    requirement_label: str
    commit_type: str
    commit_title: str
    commit_message: str
    proposal_type: str
    mr_type: str
    mr_title: str


KIND_PROFILES = {
    KIND_CORRECTIVE: KindProfile(
        noun="corrective action",
        subject="a non-conformity",
        requirement_label="Correction requirement",
        commit_type="CORRECTIVE_ACTION_COMMITTED",
        commit_title="Correction Requirement Committed for {department}",
        commit_message=(
            "A correction requirement has been committed for a non-conformity in your "
            "department. Please provide a proposed action and root cause analysis."
        ),
        proposal_type="ROOT_CAUSE_ANALYSIS_SUBMITTED",
        mr_type="CORRECTIVE_ACTION_MR_NOTIFICATION",
        mr_title="Corrective Action Requires MR Review",
    ),
    KIND_PREVENTIVE: KindProfile(
        noun="preventive action",
        subject="an improvement opportunity",
        requirement_label="Observation requirement",
        commit_type="PREVENTIVE_ACTION_OBSERVATION_COMMITTED",
        commit_title="Observation Requirement Committed for {department}",
        commit_message=(
            "An observation requirement has been committed for an improvement opportunity "
            "in your department. Please provide a potential root cause analysis and "
            "preventive action."
        ),
        proposal_type="PREVENTIVE_ROOT_CAUSE_SUBMITTED",
        mr_type="PREVENTIVE_ACTION_MR_NOTIFICATION",
        mr_title="Preventive Action Requires MR Review",
    ),
}


@dataclass
class TransitionResult:
    """A committed case plus what happened to its hand-off notification (if any)."""
    case: object
    dispatch: DispatchResult | None = None

    @property
    def http_status(self) -> int:
        return self.dispatch.http_status if self.dispatch is not None else 200


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════

class CapaWorkflow:
    """Stage transitions for one case kind within one tenant."""

    def __init__(
        self,
        kind: str,
        tenant_id: int,
        *,
        resolver: RecipientResolver | None = None,
        dispatcher: NotificationDispatcher | None = None,
        mr_role_name: str | None = None,
    ):
        if kind not in CASE_MODELS:
            raise ValueError(f"Unknown CAPA kind: {kind!r}")
        self.kind = kind
        self.model = CASE_MODELS[kind]
        self.profile = KIND_PROFILES[kind]
        self.tenant_id = tenant_id
        self.resolver = resolver or RecipientResolver()
        self.dispatcher = dispatcher or NotificationDispatcher()
        if mr_role_name is None:
            mr_role_name = (
                current_app.config.get("MR_ROLE_NAME", DEFAULT_MR_ROLE_NAME)
                if has_app_context() else DEFAULT_MR_ROLE_NAME
            )
        self.mr_role_name = mr_role_name

    # ── Loading ──────────────────────────────────────────────────────────

    def _actor(self, actor_id) -> User:
        user = get_scoped_or_none(User, actor_id, tenant_id=self.tenant_id) if actor_id else None
        if user is None or not user.is_active:
            raise PermissionDenied(actor_id, f"act on {self.profile.noun}s", "not an active user of this tenant")
        return user

    def _load(self, case_id, *, for_update: bool = True, include_archived: bool = False):
        return get_scoped(
            self.model, case_id, tenant_id=self.tenant_id,
            for_update=for_update, include_archived=include_archived,
        )

    def get_case(self, case_id):
        return self._load(case_id, for_update=False)

    def case_history(self, case_id):
        """Transition log of one case plus every attempt at each re-openable stage."""
        case = self._load(case_id, for_update=False, include_archived=True)
        return {
            "events": [log.to_dict() for log in history_for(case.entity_type, case.id)],
            "attempts": {
                field: stage_history(case.entity_type, case.id, field)
                for field in ("proposed_action", "appropriateness_review",
                              "follow_up_action", "action_effectiveness")
            },
        }

    def get_case_for_companion(self, companion_id):
        """Look a case up by its NonConformity / ImprovementOpportunity id (the front-end key)."""
        fk = getattr(self.model, f"{self.model.companion_attr}_id")
        case = (
            self.model.query_for_tenant(self.tenant_id)
            .filter(fk == companion_id, self.model.archived_at.is_(None))
            .first()
        )
        if case is None:
            raise NotFoundError(resource=self.model.__name__, resource_id=f"{self.model.companion_attr}={companion_id}")
        return case

    def case_query(self, *, status: str | None = None, department: str | None = None,
                   include_archived: bool = False):
        q = self.model.query_for_tenant(self.tenant_id)
        if not include_archived:
            q = q.filter(self.model.archived_at.is_(None))
        if status:
            status = status.upper()
            if status not in CAPA_STATUSES:
                raise ValidationError(f"Unknown status: {status}", details={"status": sorted(CAPA_STATUSES)})
            q = q.filter(self.model.status == status)
        if department:
            companion = getattr(self.model, self.model.companion_attr)
            q = q.join(companion).join(Finding).filter(Finding.department == department)
        return q.order_by(self.model.id.desc())

    def list_cases(self, **filters):
        return self.case_query(**filters).all()

    def describe_case(self, case) -> dict:
        """Case dict plus its finding, companion and resolved people names."""
        data = case.to_dict()
        finding = case.finding
        data["finding"] = finding.to_dict() if finding else None
        data[self.model.companion_attr] = case.companion.to_dict() if case.companion else None
        data["link"] = case.link
        data["created_by_name"] = case.created_by.full_name if case.created_by else None
        data["assigned_to_name"] = case.assigned_to.full_name if case.assigned_to else None
        review = case.appropriateness_review or {}
        reviewer = (
            get_scoped_or_none(User, review["reviewer_id"], tenant_id=self.tenant_id)
            if review.get("reviewer_id") else None
        )
        data["reviewer_name"] = reviewer.full_name if reviewer else None
        return data

    # ── Recipients ───────────────────────────────────────────────────────

    def _department_names(self, case) -> list[str]:
        finding = case.finding
        names = finding.departments if finding else []
        if not names:
            raise NotFoundError(
                resource="Department",
                resource_id=f"finding={finding.id if finding else None}",
                tenant_id=self.tenant_id,
            )
        return names

    def _department_heads(self, case) -> list[tuple[str, Recipient]]:
        """(department, recipient) per finding department; vacant posts become unresolved.

        Raises NotFoundError when a department does not exist at all.
        """
        recipients = []
        for name in self._department_names(case):
            label = f"HOD of {name}"
            try:
                hod = self.resolver.require_department_head(name, self.tenant_id)
                recipients.append((name, Recipient(label=label, user=hod)))
            except NoResponsiblePartyError as exc:
                logger.warning(
                    "No HOD for department %s (case %s) - state change continues",
                    name, case.id, extra={"tenant_id": self.tenant_id, "case_id": case.id},
                )
                recipients.append((name, Recipient.unresolved(label, f"Department '{name}': {exc.reason}")))
        return recipients

    def _creator(self, case) -> list[Recipient]:
        creator = case.created_by
        if creator is None:
            return [Recipient.unresolved("auditor", "Case has no creating auditor")]
        return [Recipient(label="auditor", user=UserRef.from_user(creator))]

    def _is_responsible(self, case, user: User) -> bool:
        if case.assigned_to_id == user.id:
            return True
        for name in case.finding.departments if case.finding else []:
            try:
                hod = self.resolver.resolve_department_head(name, self.tenant_id)
            except NotFoundError:
                continue
            if hod is not None and hod.id == user.id:
                return True
        return False

    # ── Commit / dispatch helpers ────────────────────────────────────────

    def _commit(self, case, action: str, actor: User, diff: dict) -> None:
        try:
            with db.session.begin_nested():
                write_audit(
                    entity_type=case.entity_type,
                    entity_id=case.id,
                    action=action,
                    tenant_id=self.tenant_id,
                    actor_user_id=actor.id,
                    diff=diff,
                )
        except Exception:
            logger.warning("Audit log failed for %s - main flow unaffected", action, exc_info=True)
        db.session.commit()
        logger.info(
            "%s %s: %s by user %s → status %s",
            type(case).__name__, case.id, action, actor.id, case.status,
            extra={"tenant_id": self.tenant_id, "case_id": case.id, "event_type": action},
        )

    def _message(self, case, *, type: str, title: str, message: str, **extra_meta) -> NotificationMessage:
        companion = case.companion
        metadata = {
            f"{case.entity_type}_id": case.id,
            f"{case.companion_attr}_id": companion.id if companion else None,
            **extra_meta,
        }
        return NotificationMessage(type=type, title=title, message=message, link=case.link, metadata=metadata)

    def _report(self, case, result: DispatchResult, event_type: str) -> DispatchResult:
        summary = result.summary
        if not summary.has_successful_notifications:
            logger.error(
                "%s %s: %s reached nobody (%d recipient(s), %d failed)",
                type(case).__name__, case.id, event_type, summary.total, summary.failed,
                extra={"tenant_id": self.tenant_id, "case_id": case.id, "event_type": event_type},
            )
        return result

    def _dispatch(self, case, recipients, message: NotificationMessage) -> DispatchResult:
        result = self.dispatcher.dispatch(recipients, message, tenant_id=self.tenant_id)
        return self._report(case, result, message.type)

    # ═════════════════════════════════════════════════════════════════════
    # 1. Commit requirement (auditor → HOD)
    # ═════════════════════════════════════════════════════════════════════

    def commit_requirement(self, case_id, requirement_data, actor_id) -> TransitionResult:
        actor = self._actor(actor_id)
        case = self._load(case_id)
        if case.requirement:
            raise ConflictError(self.model.__name__, "requirement")
        requirement = REQUIREMENT_TYPES[self.kind].from_payload(
            requirement_data, committed_by=actor.id, auditor_name=actor.full_name,
        )
        recipients = self._department_heads(case)

        diff = capa_lifecycle.apply_commit_requirement(case, requirement)
        self._commit(case, "capa.commit_requirement", actor, diff)

        # Title and metadata name the department, so each HOD gets its own message.
        dispatch = DispatchResult()
        for department, recipient in recipients:
            message = self._message(
                case,
                type=self.profile.commit_type,
                title=self.profile.commit_title.format(department=department),
                message=self.profile.commit_message,
                department=department,
                committed_by=actor.id,
            )
            single = self.dispatcher.dispatch([recipient], message, tenant_id=self.tenant_id)
            dispatch.outcomes.extend(single.outcomes)
        return TransitionResult(case=case, dispatch=self._report(case, dispatch, self.profile.commit_type))

    # ═════════════════════════════════════════════════════════════════════
    # 2. Proposed action (HOD → auditor)
    # ═════════════════════════════════════════════════════════════════════

    def submit_proposed_action(self, case_id, proposal, actor_id) -> TransitionResult:
        actor = self._actor(actor_id)
        case = self._load(case_id)
        if not self._is_responsible(case, actor):
            raise PermissionDenied(actor.id, f"submit the proposed {self.profile.noun}",
                                   "only the department head or assignee can")
        parsed = PROPOSAL_TYPES[self.kind].from_payload(proposal, submitted_by=actor.id)

        diff = capa_lifecycle.apply_proposed_action(case, parsed)
        self._commit(case, "capa.submit_proposed_action", actor, diff)

        message = self._message(
            case,
            type=self.profile.proposal_type,
            title="Root Cause Analysis Submitted",
            message=f"The HOD has submitted a root cause analysis for {self.profile.noun}: {case.title}.",
            submitted_by=actor.id,
        )
        return TransitionResult(case=case, dispatch=self._dispatch(case, self._creator(case), message))

    # ═════════════════════════════════════════════════════════════════════
    # 3. Appropriateness review (auditor → HOD, only on commit)
    # ═════════════════════════════════════════════════════════════════════

    def submit_appropriateness_review(self, case_id, response, comment=None, actor_id=None,
                                      commit: bool = False) -> TransitionResult:
        actor = self._actor(actor_id)
        case = self._load(case_id)
        review = AppropriatenessReview.from_payload(
            {"response": response, "comment": comment}, reviewer_id=actor.id,
        )
        recipients = [r for _, r in self._department_heads(case)] if commit else []

        diff = capa_lifecycle.apply_appropriateness_review(case, review)
        self._commit(case, "capa.submit_appropriateness_review", actor, diff)

        if not commit:
            return TransitionResult(case=case)
        message = self._message(
            case,
            type="APPROPRIATENESS_REVIEWED",
            title="Appropriateness Review Completed",
            message=(
                "The auditor has reviewed the appropriateness of the proposed action for "
                f"{self.profile.subject} in your department."
            ),
            response=review.response.value,
        )
        return TransitionResult(case=case, dispatch=self._dispatch(case, recipients, message))

    # ═════════════════════════════════════════════════════════════════════
    # 4-5. Silent auditor updates
    # ═════════════════════════════════════════════════════════════════════

    def submit_follow_up_action(self, case_id, action, actor_id):
        actor = self._actor(actor_id)
        case = self._load(case_id)
        follow_up = FollowUpAction.from_payload({"action": action}, updated_by=actor.id)
        diff = capa_lifecycle.apply_follow_up_action(case, follow_up)
        self._commit(case, "capa.submit_follow_up_action", actor, diff)
        return case

    def submit_action_effectiveness(self, case_id, response, details, actor_id):
        actor = self._actor(actor_id)
        case = self._load(case_id)
        effectiveness = ActionEffectiveness.from_payload(
            {"response": response, "details": details}, reviewer_id=actor.id,
        )
        diff = capa_lifecycle.apply_action_effectiveness(case, effectiveness)
        self._commit(case, "capa.submit_action_effectiveness", actor, diff)
        return case

    # ═════════════════════════════════════════════════════════════════════
    # 6. Management representative escalation
    # ═════════════════════════════════════════════════════════════════════

    def resolve_management_representative(self) -> UserRef:
        if not self.resolver.role_exists(self.mr_role_name, self.tenant_id):
            raise NotFoundError(resource="Role", resource_id=self.mr_role_name, tenant_id=self.tenant_id)
        users = self.resolver.resolve_users_by_role(self.mr_role_name, self.tenant_id)
        if not users:
            raise NotFoundError(
                resource=f"User with role {self.mr_role_name}", tenant_id=self.tenant_id,
            )
        if len(users) > 1:
            logger.warning(
                "%d users hold role %s in tenant %s; notifying user %s",
                len(users), self.mr_role_name, self.tenant_id, users[0].id,
            )
        return users[0]

    def notify_management_representative(self, case_id, comment=None, actor_id=None) -> DispatchResult:
        actor = self._actor(actor_id)
        case = self._load(case_id)
        if comment is not None and not isinstance(comment, str):
            raise ValidationError("comment must be a string", details={"comment": "must be a string"})
        comment = (comment or "").strip() or None
        mr = self.resolve_management_representative()

        diff = capa_lifecycle.apply_mr_notified(case)
        self._commit(case, "capa.notify_management_representative", actor, diff)

        message = self._message(
            case,
            type=self.profile.mr_type,
            title=self.profile.mr_title,
            message=self.management_summary(case, comment),
            notified_by=actor.id,
            comment=comment,
        )
        return self._dispatch(case, [Recipient(label="MR", user=mr)], message)

    def management_summary(self, case, comment: str | None = None) -> str:
        """Plain-text case summary carried by the MR notification."""
        finding = case.finding
        audit = finding.audit if finding else None
        requirement = REQUIREMENT_TYPES[self.kind].from_dict(case.requirement)
        proposal = PROPOSAL_TYPES[self.kind].from_dict(case.proposed_action)
        follow_up = case.follow_up_action or {}

        rows = [
            ("Programme", audit.program_name if audit else None),
            ("Audit number", audit.audit_number if audit else None),
            ("Department", ", ".join(finding.departments) if finding else None),
            ("Area", requirement.area if requirement else None),
            ("Requirement", requirement.headline if requirement else None),
        ]
        if self.kind == KIND_PREVENTIVE:
            rows.append(("Evidence", requirement.evidence if requirement else None))
        rows += [
            ("Root cause", proposal.root_cause if proposal else None),
            ("Correction" if self.kind == KIND_CORRECTIVE else "Prevention",
             proposal.correction_text if proposal else None),
            ("Action", proposal.action_text if proposal else None),
            ("Completion date", proposal.completion_date if proposal else None),
            ("Follow-up status", FOLLOW_UP_LABELS.get(follow_up.get("action"), "Not yet followed up")),
            ("Comment", comment),
        ]
        lines = [f"A {self.profile.noun} requires your review."]
        lines += [f"{label}: {value or 'N/A'}" for label, value in rows]
        return "\n".join(lines)

    # ═════════════════════════════════════════════════════════════════════
    # Archival
    # ═════════════════════════════════════════════════════════════════════

    def archive_case(self, case_id, actor_id):
        actor = self._actor(actor_id)
        case = get_scoped(self.model, case_id, tenant_id=self.tenant_id, for_update=True)
        if case.is_archived:
            raise ConflictError(self.model.__name__, "archived_at", case.archived_at.isoformat())
        now = datetime.now(UTC)
        case.archived_at = now
        self._commit(case, "capa.archive", actor, {"archived_at": {"old": None, "new": now.isoformat()}})
        return case

    # ═════════════════════════════════════════════════════════════════════
    # Assignment
    # ═════════════════════════════════════════════════════════════════════

    def assign_case(self, case_id, assignee_id, actor_id):
        """Set (or clear, with ``assignee_id=None``) the user who may answer for the department.

        The assignee may submit the proposed action alongside the department heads.
        """
        actor = self._actor(actor_id)
        if assignee_id is not None and (isinstance(assignee_id, bool) or not isinstance(assignee_id, int)):
            raise ValidationError("assignee_id must be an integer or null", details={"assignee_id": "must be an integer"})
        assignee = None
        if assignee_id is not None:
            assignee = get_scoped_or_none(User, assignee_id, tenant_id=self.tenant_id)
            if assignee is None or not assignee.is_active:
                raise ValidationError(
                    "Assignee must be an active user of this tenant",
                    details={"assignee_id": "not an active user of this tenant"},
                )
        case = self._load(case_id)

        diff = capa_lifecycle.apply_assignment(case, assignee.id if assignee else None)
        self._commit(case, "capa.assign", actor, diff)
        return case
