"""
HTTP tests for the CAPA, finding and health blueprints.

Checks the response contract on top of the workflow:
    - actor context: 401 without identity, 403 for inactive tenant / foreign user
    - 200 when every recipient was reached, 207 when the transition committed
      but a notification failed
    - domain errors mapped to 400 / 403 / 404 / 409 / 422 with error codes
"""

import pytest

from auditcapa.models import db

from conftest import make_finding, make_tenant, make_user, open_case

CA = "/api/v1/corrective-actions"
PA = "/api/v1/preventive-actions"

REQUIREMENT = {"area": "Metrology lab", "requirement": "ISO 9001 7.1.5.2"}
PROPOSAL = {
    "root_cause": "Calibration schedule kept on paper",
    "correction": "Recalibrate both gauges",
    "corrective_action": "Move schedule into the CMMS",
    "completion_date": "2026-12-01",
    "auditee": "Quinn Quality",
}


def _as(org, user):
    return {"X-Tenant-Id": str(org.tenant.id), "X-User-Id": str(user.id)}


# ═════════════════════════════════════════════════════════════════════════════
# Actor context
# ═════════════════════════════════════════════════════════════════════════════


class TestActorContext:

    def test_missing_identity_is_401(self, client, org):
        res = client.get(CA)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_inactive_tenant_is_403(self, client, org):
        org.tenant.is_active = False
        db.session.commit()
        assert client.get(CA, headers=_as(org, org.auditor)).status_code == 403

    def test_user_of_other_tenant_is_403(self, client, org):
        other = make_tenant("Other Corp", "other")
        stranger = make_user(other, "Sam", "Stranger")
        db.session.commit()
        res = client.get(CA, headers={"X-Tenant-Id": str(org.tenant.id), "X-User-Id": str(stranger.id)})
        assert res.status_code == 403

    def test_query_params_are_accepted(self, client, org):
        res = client.get(f"{CA}?tenant_id={org.tenant.id}&user_id={org.auditor.id}")
        assert res.status_code == 200

    def test_tenant_id_in_json_body_is_accepted(self, client, org):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/follow-up",
            json={"action": "NO_ACTION_TAKEN", "tenant_id": org.tenant.id},
            headers={"X-User-Id": str(org.auditor.id)},
        )
        assert res.status_code == 200
        assert res.get_json()["corrective_action"]["follow_up_action"]["action"] == "NO_ACTION_TAKEN"

    def test_health_needs_no_identity(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        live = client.get("/api/v1/health/live")
        assert live.status_code == 200
        assert live.get_json()["checks"]["database"]["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


class TestReads:

    def test_unknown_collection_is_404(self, client, org):
        res = client.get("/api/v1/widgets", headers=_as(org, org.auditor))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_and_filter(self, client, org, channel):
        first = open_case(org)
        open_case(org, department="Operations", title="Pallet racking damaged")
        client.post(f"{CA}/{first.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))

        res = client.get(CA, headers=_as(org, org.auditor))
        assert res.get_json()["total"] == 2
        res = client.get(f"{CA}?status=IN_PROGRESS", headers=_as(org, org.auditor))
        assert [c["id"] for c in res.get_json()["items"]] == [first.id]
        res = client.get(f"{CA}?department=Operations", headers=_as(org, org.auditor))
        assert res.get_json()["total"] == 1

    def test_unknown_status_filter_is_422(self, client, org):
        res = client.get(f"{CA}?status=BOGUS", headers=_as(org, org.auditor))
        assert res.status_code == 422
        assert "status" in res.get_json()["details"]

    def test_get_case_detail(self, client, org):
        case = open_case(org)
        res = client.get(f"{CA}/{case.id}", headers=_as(org, org.auditor))
        data = res.get_json()
        assert res.status_code == 200
        assert data["created_by_name"] == "Alice Auditor"
        assert data["finding"]["category"] == "NON_CONFORMITY"
        assert data["link"] == f"/auditors/corrective-actions/{case.non_conformity_id}"

    def test_case_by_companion(self, client, org):
        case = open_case(org, category="IMPROVEMENT")
        res = client.get(f"{PA}/by-companion/{case.improvement_opportunity_id}", headers=_as(org, org.auditor))
        assert res.status_code == 200
        assert res.get_json()["id"] == case.id

    def test_missing_case_is_404(self, client, org):
        assert client.get(f"{CA}/999", headers=_as(org, org.auditor)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitions:

    def test_commit_requirement_200(self, client, org, channel):
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))

        assert res.status_code == 200
        body = res.get_json()
        assert body["success"] is True
        assert body["corrective_action"]["status"] == "IN_PROGRESS"
        assert body["notification_summary"]["successful"] == 1
        assert body["notification_details"][0]["status"] == "SUCCESS"
        assert body["message"] == "Correction requirement committed successfully. 1 HOD notification sent."
        assert channel.pushes[0][0] == org.hod_quality.id

    def test_second_commit_is_409(self, client, org, channel):
        case = open_case(org)
        client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))
        res = client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_vacant_head_is_207(self, client, org, channel):
        case = open_case(org, department="Logistics")
        res = client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))

        assert res.status_code == 207
        body = res.get_json()
        assert body["corrective_action"]["status"] == "IN_PROGRESS"
        assert body["notification_summary"]["has_successful_notifications"] is False
        assert "check department configuration" in body["message"]

    def test_realtime_down_is_partial(self, client, org):
        # No recording channel: the app's Socket.IO channel is not initialised
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))

        assert res.status_code == 200
        body = res.get_json()
        assert body["notification_summary"]["partial_success"] == 1
        assert "partially sent" in body["message"]

    def test_unknown_department_is_404_and_nothing_changes(self, client, org, channel):
        case = open_case(org, department="Ghost")
        res = client.post(f"{CA}/{case.id}/requirement", json=REQUIREMENT, headers=_as(org, org.auditor))
        assert res.status_code == 404
        detail = client.get(f"{CA}/{case.id}", headers=_as(org, org.auditor)).get_json()
        assert detail["requirement"] is None

    @pytest.mark.parametrize("raw", ["[1, 2]", "{not json", '"text"'])
    def test_malformed_body_is_400(self, client, org, raw):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/requirement", data=raw, content_type="application/json",
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_MALFORMED"

    def test_non_json_content_type_is_415(self, client, org):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/requirement", data="area=lab", content_type="text/plain",
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 415

    def test_missing_field_is_422(self, client, org, channel):
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/requirement", json={"area": "Lab"}, headers=_as(org, org.auditor))
        assert res.status_code == 422
        assert res.get_json()["details"]["requirement"] == "is required"

    def test_proposal_by_head_notifies_auditor(self, client, org, channel):
        case = open_case(org)
        res = client.put(f"{CA}/{case.id}/proposed-action", json=PROPOSAL, headers=_as(org, org.hod_quality))
        assert res.status_code == 200
        assert res.get_json()["message"] == "Proposed action submitted successfully. 1 auditor notification sent."
        assert channel.pushes[0][0] == org.auditor.id

    def test_proposal_by_outsider_is_403(self, client, org, channel):
        case = open_case(org)
        res = client.put(f"{CA}/{case.id}/proposed-action", json=PROPOSAL, headers=_as(org, org.hod_ops))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_review_no_without_comment_is_422(self, client, org, channel):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/appropriateness-review", json={"response": "NO"}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 422
        assert "comment" in res.get_json()["details"]

    def test_review_without_commit_is_silent(self, client, org, channel):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/appropriateness-review", json={"response": "YES"}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert "notification_summary" not in body
        assert body["corrective_action"]["appropriateness_review"]["response"] == "YES"
        assert channel.pushes == []

    @pytest.mark.parametrize("flag", ["false", "true", 0, 1])
    def test_non_boolean_commit_is_422(self, client, org, channel, flag):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/appropriateness-review",
            json={"response": "YES", "commit": flag}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 422
        assert "commit" in res.get_json()["details"]
        detail = client.get(f"{CA}/{case.id}", headers=_as(org, org.auditor)).get_json()
        assert detail["appropriateness_review"] is None
        assert channel.pushes == []

    def test_explicit_false_commit_is_silent(self, client, org, channel):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/appropriateness-review",
            json={"response": "YES", "commit": False}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        assert "notification_summary" not in res.get_json()
        assert channel.pushes == []

    def test_review_with_commit_notifies(self, client, org, channel):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/appropriateness-review",
            json={"response": "NO", "comment": "Add verification", "commit": True},
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        assert res.get_json()["notification_summary"]["successful"] == 1

    def test_follow_up_and_effectiveness(self, client, org):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/follow-up", json={"action": "ACTION_FULLY_COMPLETED"}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        assert res.get_json()["corrective_action"]["status"] == "COMPLETED"

        res = client.post(
            f"{CA}/{case.id}/effectiveness", json={"response": "NO", "details": "Drifted"},
            headers=_as(org, org.auditor),
        )
        assert res.get_json()["corrective_action"]["status"] == "IN_PROGRESS"

    def test_notify_mr_without_role_is_404(self, client, org, channel):
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/notify-mr", json={}, headers=_as(org, org.auditor))
        assert res.status_code == 404

    def test_notify_mr(self, client, org, channel, mr_role):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/notify-mr", json={"comment": "Escalating"}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["mr_notified"] is True
        assert body["notification_details"][0]["user_id"] == org.mr.id

    def test_preventive_commit(self, client, org, channel):
        case = open_case(org, category="IMPROVEMENT")
        res = client.post(
            f"{PA}/{case.id}/requirement",
            json={"area": "Warehouse", "observation": "Labels fade"},
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["preventive_action"]["requirement"]["observation"] == "Labels fade"
        assert body["message"].startswith("Observation requirement committed successfully.")


# ═════════════════════════════════════════════════════════════════════════════
# Diagnostics and archival
# ═════════════════════════════════════════════════════════════════════════════


class TestOperations:

    def test_debug_report_healthy(self, client, org, channel):
        case = open_case(org)
        res = client.get(f"{CA}/{case.id}/notification-debug", headers=_as(org, org.auditor))
        data = res.get_json()
        assert data["summary"]["overall_status"] == "healthy"
        assert data["departments"][0]["hod"]["id"] == org.hod_quality.id
        assert data["realtime"]["status"] == "operational"

    def test_debug_report_explains_vacant_head(self, client, org, channel):
        case = open_case(org, department="Logistics")
        data = client.get(f"{CA}/{case.id}/notification-debug", headers=_as(org, org.auditor)).get_json()

        assert data["summary"]["overall_status"] == "warning"
        assert data["departments"][0]["hod_error"] == "No HOD assigned to department"
        assert "Assign an HOD to this department" in data["summary"]["recommendations"]

    def test_debug_report_critical(self, client, org):
        case = open_case(org, department="Ghost", secondary=["Logistics"])
        data = client.get(f"{CA}/{case.id}/notification-debug", headers=_as(org, org.auditor)).get_json()

        assert data["summary"]["overall_status"] == "critical"
        assert data["departments"][0]["exists"] is False
        assert data["realtime"]["status"] == "not_initialized"

    def test_archive(self, client, org):
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/archive", headers=_as(org, org.auditor))
        assert res.status_code == 200
        assert res.get_json()["corrective_action"]["archived_at"] is not None
        assert client.get(f"{CA}/{case.id}", headers=_as(org, org.auditor)).status_code == 404
        assert client.post(f"{CA}/{case.id}/archive", headers=_as(org, org.auditor)).status_code == 409

    def test_assign(self, client, org, channel):
        case = open_case(org)
        res = client.post(
            f"{CA}/{case.id}/assign", json={"assignee_id": org.hod_ops.id}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        assert res.get_json()["corrective_action"]["assigned_to_id"] == org.hod_ops.id

        res = client.put(
            f"{CA}/{case.id}/proposed-action", json=PROPOSAL, headers=_as(org, org.hod_ops),
        )
        assert res.status_code == 200

    def test_unassign(self, client, org):
        case = open_case(org)
        client.post(f"{CA}/{case.id}/assign", json={"assignee_id": org.hod_ops.id}, headers=_as(org, org.auditor))
        res = client.post(f"{CA}/{case.id}/assign", json={"assignee_id": None}, headers=_as(org, org.auditor))
        assert res.status_code == 200
        assert res.get_json()["corrective_action"]["assigned_to_id"] is None

    @pytest.mark.parametrize("payload", [{}, {"assignee_id": "abc"}, {"assignee_id": 99999}])
    def test_bad_assignee_is_422(self, client, org, payload):
        case = open_case(org)
        res = client.post(f"{CA}/{case.id}/assign", json=payload, headers=_as(org, org.auditor))
        assert res.status_code == 422
        assert "assignee_id" in res.get_json()["details"]

    def test_history_survives_archive(self, client, org):
        case = open_case(org)
        client.post(f"{CA}/{case.id}/follow-up", json={"action": "NO_ACTION_TAKEN"}, headers=_as(org, org.auditor))
        client.post(f"{CA}/{case.id}/archive", headers=_as(org, org.auditor))

        res = client.get(f"{CA}/{case.id}/history", headers=_as(org, org.auditor))
        assert res.status_code == 200
        data = res.get_json()
        assert [e["action"] for e in data["events"]] == ["capa.submit_follow_up_action", "capa.archive"]
        assert data["attempts"]["follow_up_action"][0]["action"] == "NO_ACTION_TAKEN"


# ═════════════════════════════════════════════════════════════════════════════
# Findings
# ═════════════════════════════════════════════════════════════════════════════


class TestCategorizeEndpoint:

    def test_categorize_creates_case(self, client, org):
        finding = make_finding(org)
        res = client.post(
            f"/api/v1/findings/{finding.id}/categorize",
            json={"category": "NON_CONFORMITY", "nc_type": "MINOR"},
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["finding"]["category"] == "NON_CONFORMITY"
        assert body["companion"]["type"] == "MINOR"
        assert body["case"]["status"] == "OPEN"
        assert body["previous_category"] is None

    def test_invalid_category_is_422(self, client, org):
        finding = make_finding(org)
        res = client.post(
            f"/api/v1/findings/{finding.id}/categorize", json={"category": "SEVERE"},
            headers=_as(org, org.auditor),
        )
        assert res.status_code == 422

    def test_unknown_finding_is_404(self, client, org):
        res = client.post(
            "/api/v1/findings/999/categorize", json={"category": "COMPLIANCE"}, headers=_as(org, org.auditor),
        )
        assert res.status_code == 404
