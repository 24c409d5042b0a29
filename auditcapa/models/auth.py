"""
Organisation models: tenants, users, roles, departments.

The CAPA engine only reads these tables to work out who must hear about a
hand-off:
  - Department.hod_id points at the head of department, the one person
    accountable for remediation in that department.
  - A role is held tenant-wide (UserRole) or inside one department
    (UserDepartmentRole); role lookups accept either.
  - A Role with tenant_id NULL is a system role visible to every tenant.
"""

from datetime import datetime, timezone

from auditcapa.models import db
from auditcapa.models.base import TenantModel

USER_ACTIVE = "active"
USER_STATUSES = (USER_ACTIVE, "invited", "inactive", "suspended")


def _now():
    return datetime.now(timezone.utc)


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class User(TenantModel):
    """Email is unique per tenant, not globally."""

    __tablename__ = "users"
    __table_args__ = (db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),)

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100), default="")
    last_name = db.Column(db.String(100), default="")
    status = db.Column(db.String(20), nullable=False, default=USER_ACTIVE)

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or self.email

    @property
    def is_active(self):
        # Only active users act on cases or receive hand-off notifications
        return self.status == USER_ACTIVE

    def __repr__(self):
        return f"<User {self.id} {self.email} ({self.status})>"


class Role(db.Model):
    __tablename__ = "roles"
    __table_args__ = (db.UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),)

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    name = db.Column(db.String(100), nullable=False)

    def __repr__(self):
        return f"<Role {self.name} tenant={self.tenant_id or 'system'}>"


class UserRole(db.Model):
    """Tenant-wide role grant."""

    __tablename__ = "user_roles"
    __table_args__ = (db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)


class Department(TenantModel):
    __tablename__ = "departments"
    __table_args__ = (db.UniqueConstraint("tenant_id", "name", name="uq_department_tenant_name"),)

    id = db.Column(db.Integer, primary_key=True)
    # Findings reference departments by name
    name = db.Column(db.String(200), nullable=False)
    hod_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    hod = db.relationship("User", foreign_keys=[hod_id])

    def __repr__(self):
        return f"<Department {self.name} hod={self.hod_id}>"


class UserDepartmentRole(TenantModel):
    """Role grant that applies inside one department."""

    __tablename__ = "user_department_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "department_id", "role_id", name="uq_user_department_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
