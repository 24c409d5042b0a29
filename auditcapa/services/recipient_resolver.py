"""
Recipient resolution for CAPA hand-offs.

The workflow never queries users, roles or departments itself; it asks an
injected ``RecipientResolver``:

    resolver = RecipientResolver()
    hod = resolver.resolve_department_head("Quality", tenant_id=1)   # UserRef | None
    mrs = resolver.resolve_users_by_role("MR", tenant_id=1)           # [UserRef]

Role resolution uses OR semantics across the two assignment paths: a user
holding the role tenant-wide (``UserRole``) and a user holding it only inside
one department (``UserDepartmentRole``) are both returned.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select

from auditcapa.core.exceptions import NoResponsiblePartyError, NotFoundError
from auditcapa.models import db
from auditcapa.models.auth import Department, Role, User, UserDepartmentRole, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRef:
    """Minimal view of a notification recipient."""
    id: int
    name: str
    email: str = ""

    @classmethod
    def from_user(cls, user: User) -> "UserRef":
        return cls(id=user.id, name=user.full_name, email=user.email)


def _role_filter(role_name: str, tenant_id: int):
    # Tenant roles and system roles (tenant_id NULL) with the same name both count.
    return (Role.name == role_name) & or_(Role.tenant_id == tenant_id, Role.tenant_id.is_(None))


class RecipientResolver:
    """Database-backed resolver over departments, roles and role assignments."""

    def get_department(self, department_name: str, tenant_id: int) -> Department:
        stmt = select(Department).where(
            Department.tenant_id == tenant_id,
            Department.name == department_name,
        )
        department = db.session.execute(stmt).scalar_one_or_none()
        if department is None:
            raise NotFoundError(resource="Department", resource_id=department_name, tenant_id=tenant_id)
        return department

    def resolve_department_head(self, department_name: str, tenant_id: int) -> UserRef | None:
        """Return the head of *department_name*, or None if the post is vacant.

        Raises:
            NotFoundError: the department does not exist in the tenant.
        """
        department = self.get_department(department_name, tenant_id)
        hod = department.hod
        if hod is None or hod.tenant_id != tenant_id or not hod.is_active:
            return None
        return UserRef.from_user(hod)

    def require_department_head(self, department_name: str, tenant_id: int) -> UserRef:
        hod = self.resolve_department_head(department_name, tenant_id)
        if hod is None:
            raise NoResponsiblePartyError(
                target=f"department '{department_name}'",
                reason="No HOD assigned",
            )
        return hod

    def role_exists(self, role_name: str, tenant_id: int) -> bool:
        stmt = select(Role.id).where(_role_filter(role_name, tenant_id)).limit(1)
        return db.session.execute(stmt).first() is not None

    def resolve_users_by_role(self, role_name: str, tenant_id: int) -> list[UserRef]:
        """Active users of the tenant holding *role_name* globally OR per department."""
        global_holders = (
            select(UserRole.user_id)
            .join(Role, Role.id == UserRole.role_id)
            .where(_role_filter(role_name, tenant_id))
        )
        department_holders = (
            select(UserDepartmentRole.user_id)
            .join(Role, Role.id == UserDepartmentRole.role_id)
            .where(
                UserDepartmentRole.tenant_id == tenant_id,
                _role_filter(role_name, tenant_id),
            )
        )
        stmt = (
            select(User)
            .where(
                User.tenant_id == tenant_id,
                User.status == "active",
                or_(User.id.in_(global_holders), User.id.in_(department_holders)),
            )
            .order_by(User.id)
        )
        users = db.session.execute(stmt).scalars().all()
        logger.debug(
            "Resolved role %s in tenant %s to %d user(s)", role_name, tenant_id, len(users),
        )
        return [UserRef.from_user(u) for u in users]
