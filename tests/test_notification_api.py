"""
Notification inbox API tests.

Every inbox route is scoped to the acting user: another user's notification
is indistinguishable from a missing one.
"""

from auditcapa.models import db
from auditcapa.services.notification import NotificationService

BASE = "/api/v1/notifications"


def _as(org, user):
    return {"X-Tenant-Id": str(org.tenant.id), "X-User-Id": str(user.id)}


def _notify(org, user, title):
    n = NotificationService.create(
        tenant_id=org.tenant.id,
        target_user_id=user.id,
        type="CORRECTIVE_ACTION_COMMITTED",
        title=title,
        message="Please provide a proposed action.",
        link="/auditors/corrective-actions/1",
        metadata={"department": "Quality"},
    )
    db.session.commit()
    return n


class TestInbox:

    def test_list_newest_first(self, client, org):
        first = _notify(org, org.hod_quality, "First")
        second = _notify(org, org.hod_quality, "Second")
        _notify(org, org.hod_ops, "Not mine")

        res = client.get(BASE, headers=_as(org, org.hod_quality))
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 2
        assert [n["id"] for n in data["items"]] == [second.id, first.id]
        assert data["items"][0]["metadata"] == {"department": "Quality"}

    def test_unread_only_and_count(self, client, org):
        a = _notify(org, org.hod_quality, "A")
        _notify(org, org.hod_quality, "B")
        client.post(f"{BASE}/mark-read", json={"ids": [a.id]}, headers=_as(org, org.hod_quality))

        res = client.get(f"{BASE}?unread_only=true", headers=_as(org, org.hod_quality))
        assert res.get_json()["total"] == 1
        res = client.get(f"{BASE}/unread-count", headers=_as(org, org.hod_quality))
        assert res.get_json() == {"unread_count": 1}

    def test_get_own_notification(self, client, org):
        n = _notify(org, org.hod_quality, "Mine")
        res = client.get(f"{BASE}/{n.id}", headers=_as(org, org.hod_quality))
        assert res.status_code == 200
        assert res.get_json()["title"] == "Mine"

    def test_other_users_notification_is_404(self, client, org):
        n = _notify(org, org.hod_ops, "Not yours")
        assert client.get(f"{BASE}/{n.id}", headers=_as(org, org.hod_quality)).status_code == 404
        res = client.post(f"{BASE}/mark-read", json={"ids": [n.id]}, headers=_as(org, org.hod_quality))
        assert res.status_code == 404

    def test_mark_read_counts_only_changes(self, client, org):
        n = _notify(org, org.hod_quality, "Once")
        first = client.post(f"{BASE}/mark-read", json={"ids": [n.id]}, headers=_as(org, org.hod_quality))
        again = client.post(f"{BASE}/mark-read", json={"ids": [n.id]}, headers=_as(org, org.hod_quality))
        assert first.get_json() == {"marked": 1}
        assert again.get_json() == {"marked": 0}

    def test_mark_read_requires_id_list(self, client, org):
        res = client.post(f"{BASE}/mark-read", json={"ids": "all"}, headers=_as(org, org.hod_quality))
        assert res.status_code == 422

    def test_mark_all_read(self, client, org):
        _notify(org, org.hod_quality, "A")
        _notify(org, org.hod_quality, "B")
        _notify(org, org.hod_ops, "Other")

        res = client.post(f"{BASE}/mark-all-read", headers=_as(org, org.hod_quality))
        assert res.get_json() == {"marked": 2}
        assert NotificationService.unread_count(org.tenant.id, org.hod_quality.id) == 0
        assert NotificationService.unread_count(org.tenant.id, org.hod_ops.id) == 1
