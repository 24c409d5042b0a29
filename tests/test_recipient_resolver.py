"""
Recipient resolution tests: department heads and role holders.

Role lookups must return users holding the role tenant-wide OR only inside a
department, restricted to active users of the requesting tenant.
"""

import pytest

from auditcapa.core.exceptions import NoResponsiblePartyError, NotFoundError
from auditcapa.models import db
from auditcapa.services.recipient_resolver import RecipientResolver, UserRef

from conftest import grant_department_role, grant_role, make_department, make_role, make_tenant, make_user


@pytest.fixture()
def resolver():
    return RecipientResolver()


class TestDepartmentHead:

    def test_resolves_head(self, org, resolver):
        hod = resolver.resolve_department_head("Quality", org.tenant.id)
        assert hod == UserRef(id=org.hod_quality.id, name="Quinn Quality", email=org.hod_quality.email)

    def test_vacant_post_is_none(self, org, resolver):
        assert resolver.resolve_department_head("Logistics", org.tenant.id) is None

    def test_require_raises_no_responsible_party(self, org, resolver):
        with pytest.raises(NoResponsiblePartyError) as exc:
            resolver.require_department_head("Logistics", org.tenant.id)
        assert exc.value.reason == "No HOD assigned"

    def test_unknown_department_is_not_found(self, org, resolver):
        with pytest.raises(NotFoundError):
            resolver.resolve_department_head("Finance", org.tenant.id)

    def test_department_names_are_tenant_scoped(self, org, resolver):
        other = make_tenant("Other Corp", "other")
        outsider = make_user(other, "Pat", "Outsider")
        make_department(other, "Quality", hod=outsider)
        db.session.commit()

        assert resolver.resolve_department_head("Quality", org.tenant.id).id == org.hod_quality.id
        assert resolver.resolve_department_head("Quality", other.id).id == outsider.id


class TestUsersByRole:

    def test_global_and_department_holders_are_both_returned(self, org, resolver):
        role = make_role("MR", org.tenant)
        grant_role(org.mr, role)
        grant_department_role(org.hod_ops, org.operations, role)
        db.session.commit()

        ids = [u.id for u in resolver.resolve_users_by_role("MR", org.tenant.id)]
        assert ids == sorted([org.mr.id, org.hod_ops.id])

    def test_department_only_holder_is_returned(self, org, resolver):
        role = make_role("MR", org.tenant)
        grant_department_role(org.hod_quality, org.quality, role)
        db.session.commit()

        [user] = resolver.resolve_users_by_role("MR", org.tenant.id)
        assert user.id == org.hod_quality.id

    def test_holder_on_both_paths_is_listed_once(self, org, resolver):
        role = make_role("MR", org.tenant)
        grant_role(org.mr, role)
        grant_department_role(org.mr, org.quality, role)
        grant_department_role(org.mr, org.operations, role)
        db.session.commit()

        assert [u.id for u in resolver.resolve_users_by_role("MR", org.tenant.id)] == [org.mr.id]

    def test_system_role_counts(self, org, resolver):
        role = make_role("MR")
        grant_role(org.mr, role)
        db.session.commit()

        assert resolver.role_exists("MR", org.tenant.id)
        assert [u.id for u in resolver.resolve_users_by_role("MR", org.tenant.id)] == [org.mr.id]

    def test_inactive_users_are_skipped(self, org, resolver):
        role = make_role("MR", org.tenant)
        grant_role(org.mr, role)
        org.mr.status = "inactive"
        db.session.commit()

        assert resolver.resolve_users_by_role("MR", org.tenant.id) == []

    def test_other_tenant_holders_are_excluded(self, org, resolver):
        other = make_tenant("Other Corp", "other")
        outsider = make_user(other, "Pat", "Outsider")
        grant_role(outsider, make_role("MR"))
        db.session.commit()

        assert resolver.resolve_users_by_role("MR", org.tenant.id) == []
        assert [u.id for u in resolver.resolve_users_by_role("MR", other.id)] == [outsider.id]

    def test_role_exists_is_tenant_scoped(self, org, resolver):
        other = make_tenant("Other Corp", "other")
        make_role("MR", other)
        db.session.commit()

        assert resolver.role_exists("MR", other.id)
        assert not resolver.role_exists("MR", org.tenant.id)
