"""
TenantModel: abstract base for every row that belongs to one tenant.

Subclasses get a non-null ``tenant_id`` foreign key (cascade on tenant
delete), ``query_for_tenant`` for list queries and ``tenant_composite_index``
for ``(tenant_id, ...)`` indexes. Lookups by id go through
``services.helpers.scoped_queries`` instead.
"""

from sqlalchemy.orm import declared_attr

from auditcapa.models import db


class TenantModel(db.Model):
    __abstract__ = True

    @declared_attr
    def tenant_id(cls):
        return db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    @classmethod
    def query_for_tenant(cls, tenant_id):
        return cls.query.filter_by(tenant_id=tenant_id)

    @classmethod
    def tenant_composite_index(cls, table_name, *columns):
        """``ix_<table>_tenant_<cols>`` over ``(tenant_id, *columns)``."""
        return db.Index(f"ix_{table_name}_tenant_{'_'.join(columns)}", "tenant_id", *columns)
