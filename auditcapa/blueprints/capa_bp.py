"""
Audit CAPA Platform
CAPA Blueprint - corrective and preventive action workflow.

Both case kinds share every route; ``<kind>`` is the URL collection name:

    GET  /api/v1/<kind>                                  list (status, department filters)
    GET  /api/v1/<kind>/<id>                             case detail
    GET  /api/v1/<kind>/by-companion/<companion_id>      case by NC / IO id (front-end links)
    GET  /api/v1/<kind>/<id>/history                     audit events and earlier stage attempts
    POST /api/v1/<kind>/<id>/requirement                 commit requirement      → HOD(s)
    PUT  /api/v1/<kind>/<id>/proposed-action             submit proposal         → auditor
    POST /api/v1/<kind>/<id>/appropriateness-review      review (commit → HOD)
    POST /api/v1/<kind>/<id>/follow-up                   silent
    POST /api/v1/<kind>/<id>/effectiveness               silent
    POST /api/v1/<kind>/<id>/notify-mr                   MR escalation
    GET  /api/v1/<kind>/<id>/notification-debug          delivery diagnostics
    POST /api/v1/<kind>/<id>/archive
    POST /api/v1/<kind>/<id>/assign                      set or clear the assignee

Transitions that notify answer 200 when every recipient was reached and
207 Multi-Status when the state change was recorded but at least one
notification was not delivered.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from auditcapa.blueprints import json_body, json_flag, paginate_query, register_error_handlers
from auditcapa.core.exceptions import NotFoundError, ValidationError
from auditcapa.models.capa import KIND_CORRECTIVE, KIND_PREVENTIVE
from auditcapa.services.capa_workflow import CapaWorkflow
from auditcapa.services.notification_diagnostics import NotificationDiagnostics
from auditcapa.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

capa_bp = Blueprint("capa", __name__, url_prefix="/api/v1")
register_error_handlers(capa_bp)

KIND_SLUGS = {
    "corrective-actions": KIND_CORRECTIVE,
    "preventive-actions": KIND_PREVENTIVE,
}

_CASE_KEY = {
    KIND_CORRECTIVE: "corrective_action",
    KIND_PREVENTIVE: "preventive_action",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _channel():
    return current_app.extensions["auditcapa.realtime"]


def _workflow(kind_slug) -> CapaWorkflow:
    kind = KIND_SLUGS.get(kind_slug)
    if kind is None:
        raise NotFoundError(resource="Collection", resource_id=kind_slug)
    return CapaWorkflow(
        kind,
        g.tenant_id,
        dispatcher=NotificationDispatcher(channel=_channel()),
        mr_role_name=current_app.config.get("MR_ROLE_NAME"),
    )


def _transition_response(wf, result, action: str, audience: str):
    body = {
        "success": True,
        _CASE_KEY[wf.kind]: result.case.to_dict(),
    }
    if result.dispatch is None:
        body["message"] = f"{action} successfully."
        return jsonify(body), 200

    body["message"] = result.dispatch.describe(action, audience)
    body["notification_summary"] = result.dispatch.summary.to_dict()
    body["notification_details"] = [o.to_dict() for o in result.dispatch.outcomes]
    return jsonify(body), result.dispatch.http_status


# ── Read ─────────────────────────────────────────────────────────────────────

@capa_bp.route("/<kind>", methods=["GET"])
def list_cases(kind):
    wf = _workflow(kind)
    query = wf.case_query(
        status=request.args.get("status"),
        department=request.args.get("department"),
        include_archived=request.args.get("include_archived", "false").lower() == "true",
    )
    items, total = paginate_query(query)
    return jsonify({"items": [c.to_dict() for c in items], "total": total}), 200


@capa_bp.route("/<kind>/<int:case_id>", methods=["GET"])
def get_case(kind, case_id):
    wf = _workflow(kind)
    return jsonify(wf.describe_case(wf.get_case(case_id))), 200


@capa_bp.route("/<kind>/by-companion/<int:companion_id>", methods=["GET"])
def get_case_for_companion(kind, companion_id):
    wf = _workflow(kind)
    return jsonify(wf.describe_case(wf.get_case_for_companion(companion_id))), 200


@capa_bp.route("/<kind>/<int:case_id>/history", methods=["GET"])
def case_history(kind, case_id):
    return jsonify(_workflow(kind).case_history(case_id)), 200


# ── Hand-offs ────────────────────────────────────────────────────────────────

@capa_bp.route("/<kind>/<int:case_id>/requirement", methods=["POST"])
def commit_requirement(kind, case_id):
    wf = _workflow(kind)
    result = wf.commit_requirement(case_id, json_body(), g.user_id)
    return _transition_response(wf, result, f"{wf.profile.requirement_label} committed", "HOD notification")


@capa_bp.route("/<kind>/<int:case_id>/proposed-action", methods=["PUT"])
def submit_proposed_action(kind, case_id):
    wf = _workflow(kind)
    result = wf.submit_proposed_action(case_id, json_body(), g.user_id)
    return _transition_response(wf, result, "Proposed action submitted", "auditor notification")


@capa_bp.route("/<kind>/<int:case_id>/appropriateness-review", methods=["POST"])
def submit_appropriateness_review(kind, case_id):
    wf = _workflow(kind)
    data = json_body()
    result = wf.submit_appropriateness_review(
        case_id,
        data.get("response"),
        data.get("comment"),
        g.user_id,
        commit=json_flag(data, "commit"),
    )
    return _transition_response(wf, result, "Appropriateness review submitted", "HOD notification")


@capa_bp.route("/<kind>/<int:case_id>/notify-mr", methods=["POST"])
def notify_management_representative(kind, case_id):
    wf = _workflow(kind)
    dispatch = wf.notify_management_representative(case_id, json_body().get("comment"), g.user_id)
    return jsonify({
        "success": True,
        "message": dispatch.describe("MR escalation recorded", "MR notification"),
        "mr_notified": True,
        "notification_summary": dispatch.summary.to_dict(),
        "notification_details": [o.to_dict() for o in dispatch.outcomes],
    }), dispatch.http_status


# ── Silent updates ───────────────────────────────────────────────────────────

@capa_bp.route("/<kind>/<int:case_id>/follow-up", methods=["POST"])
def submit_follow_up_action(kind, case_id):
    wf = _workflow(kind)
    case = wf.submit_follow_up_action(case_id, json_body().get("action"), g.user_id)
    return jsonify({"success": True, _CASE_KEY[wf.kind]: case.to_dict()}), 200


@capa_bp.route("/<kind>/<int:case_id>/effectiveness", methods=["POST"])
def submit_action_effectiveness(kind, case_id):
    wf = _workflow(kind)
    data = json_body()
    case = wf.submit_action_effectiveness(case_id, data.get("response"), data.get("details"), g.user_id)
    return jsonify({"success": True, _CASE_KEY[wf.kind]: case.to_dict()}), 200


# ── Operations ───────────────────────────────────────────────────────────────

@capa_bp.route("/<kind>/<int:case_id>/notification-debug", methods=["GET"])
def notification_debug(kind, case_id):
    wf = _workflow(kind)
    case = wf.get_case(case_id)
    return jsonify(NotificationDiagnostics(g.tenant_id, channel=_channel()).report(case)), 200


@capa_bp.route("/<kind>/<int:case_id>/archive", methods=["POST"])
def archive_case(kind, case_id):
    wf = _workflow(kind)
    case = wf.archive_case(case_id, g.user_id)
    return jsonify({"success": True, _CASE_KEY[wf.kind]: case.to_dict()}), 200


@capa_bp.route("/<kind>/<int:case_id>/assign", methods=["POST"])
def assign_case(kind, case_id):
    wf = _workflow(kind)
    data = json_body()
    if "assignee_id" not in data:
        raise ValidationError("assignee_id is required", details={"assignee_id": "is required"})
    case = wf.assign_case(case_id, data["assignee_id"], g.user_id)
    return jsonify({"success": True, _CASE_KEY[wf.kind]: case.to_dict(), "message": "Case assigned successfully."}), 200
