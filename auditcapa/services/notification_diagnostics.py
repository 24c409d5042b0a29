"""
Notification Diagnostics.

Explains why the hand-off notification of a CAPA case may not reach anyone:
missing departments, vacant or deactivated HODs, a silent notification
store, or a realtime channel that never came up.  Read-only.

Usage:
    report = NotificationDiagnostics(tenant_id=1).report(case)
    report["summary"]["overall_status"]   # healthy | warning | critical
"""

import logging
from datetime import UTC, datetime, timedelta

from auditcapa.models.auth import Department
from auditcapa.models.notification import Notification
from auditcapa.services.realtime import RealtimeChannel

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(hours=24)


class NotificationDiagnostics:
    """Builds a per-case delivery health report."""

    def __init__(self, tenant_id: int, channel=None):
        self.tenant_id = tenant_id
        self.channel = channel or RealtimeChannel()

    def _department(self, name: str) -> dict:
        department = Department.query_for_tenant(self.tenant_id).filter_by(name=name).first()
        if department is None:
            return {
                "name": name,
                "exists": False,
                "error": "Department not found",
                "suggestions": [
                    "Check that the finding's department name matches exactly (case-sensitive)",
                    "Ensure the department exists in this tenant",
                ],
            }
        result = {"name": name, "exists": True, "department_id": department.id}
        if department.hod_id is None:
            result["hod_error"] = "No HOD assigned to department"
            result["suggestions"] = [
                "Assign an HOD to this department",
                "Check department configuration in admin panel",
            ]
        elif department.hod is None or department.hod.tenant_id != self.tenant_id:
            result["hod_error"] = "HOD user not found (user may be deleted)"
            result["suggestions"] = ["Reassign the HOD of this department"]
        else:
            hod = department.hod
            result["hod"] = {"id": hod.id, "name": hod.full_name, "email": hod.email, "status": hod.status}
            if not hod.is_active:
                result["hod_error"] = f"HOD user is {hod.status}"
                result["suggestions"] = ["Reactivate the HOD user or assign an active one"]
        return result

    def _notification_store(self, case) -> dict:
        since = datetime.now(UTC) - RECENT_WINDOW
        q = Notification.query_for_tenant(self.tenant_id).filter(
            Notification.link == case.link,
            Notification.created_at >= since,
        )
        recent = q.order_by(Notification.created_at.desc()).limit(5).all()
        return {
            "system_status": "operational",
            "recent_notifications": q.count(),
            "sample_notifications": [
                {"id": n.id, "type": n.type, "target_user_id": n.target_user_id, "is_read": n.is_read}
                for n in recent
            ],
        }

    def _realtime(self) -> dict:
        if not self.channel.available:
            return {
                "status": "not_initialized",
                "error": "Socket.io not initialised",
                "suggestions": [
                    "Set REALTIME_ENABLED=true",
                    "Check the Socket.IO message queue (SOCKETIO_MESSAGE_QUEUE) is reachable",
                ],
            }
        return {"status": "operational"}

    def report(self, case) -> dict:
        finding = case.finding
        departments = [self._department(name) for name in (finding.departments if finding else [])]
        store = self._notification_store(case)
        realtime = self._realtime()

        issues, recommendations = [], []
        if not departments:
            issues.append("Department: finding has no department")
            recommendations.append("Set the department of the finding")
        for dept in departments:
            if dept.get("error"):
                issues.append(f"Department {dept['name']}: {dept['error']}")
            elif dept.get("hod_error"):
                issues.append(f"HOD of {dept['name']}: {dept['hod_error']}")
            recommendations.extend(dept.get("suggestions", []))
        if realtime["status"] != "operational":
            issues.append(f"Realtime: {realtime['error']}")
            recommendations.extend(realtime["suggestions"])

        if not issues:
            overall = "healthy"
        elif len(issues) <= 2:
            overall = "warning"
        else:
            overall = "critical"

        logger.debug("Notification diagnostics for %s %s: %s", case.entity_type, case.id, overall)
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "case": {"id": case.id, "kind": case.kind, "status": case.status, "link": case.link},
            "departments": departments,
            "notification_store": store,
            "realtime": realtime,
            "summary": {
                "overall_status": overall,
                "issues": issues,
                "recommendations": recommendations,
            },
        }
