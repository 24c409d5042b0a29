"""
Tenant-scoped lookups by primary key.

Services never call ``db.session.get(Model, pk)`` for tenant data: a case id
taken from the URL must not reach another tenant's row. Every keyword scope
is a column equality filter, and a row outside the scope is reported exactly
like a missing one.

    case = get_scoped(CorrectiveAction, case_id, tenant_id=tid, for_update=True)
    n = get_scoped(Notification, nid, tenant_id=tid, target_user_id=uid)
    actor = get_scoped_or_none(User, uid, tenant_id=tid)

``for_update`` takes the row lock that serialises concurrent transitions on
one case (SQLite ignores it). ``include_archived=False`` hides cases whose
finding moved to another category.
"""

import logging

from sqlalchemy import select

from auditcapa.core.exceptions import NotFoundError
from auditcapa.models import db

logger = logging.getLogger(__name__)


def _scoped_select(model, pk, scope, include_archived):
    scope = {k: v for k, v in scope.items() if v is not None}
    if not scope:
        raise ValueError(f"{model.__name__} id={pk}: refusing an unscoped lookup")
    unknown = sorted(k for k in scope if not hasattr(model, k))
    if unknown:
        # A misspelt scope would silently widen the lookup
        raise ValueError(f"{model.__name__} has no scope column(s) {unknown}")

    stmt = select(model).where(model.id == pk)
    for column, value in scope.items():
        stmt = stmt.where(getattr(model, column) == value)
    if not include_archived and hasattr(model, "archived_at"):
        stmt = stmt.where(model.archived_at.is_(None))
    return stmt


def get_scoped(model, pk, *, for_update=False, include_archived=True, **scope):
    """Return the row or raise ``NotFoundError`` (404).

    Raises ValueError when no scope is given or a scope column does not exist
    on *model*; both are programming errors.
    """
    stmt = _scoped_select(model, pk, scope, include_archived)
    if for_update:
        stmt = stmt.with_for_update()

    row = db.session.execute(stmt).scalar_one_or_none()
    if row is None:
        logger.debug("get_scoped: %s id=%s not in scope %s", model.__name__, pk, scope)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return row


def get_scoped_or_none(model, pk, *, include_archived=True, **scope):
    """``get_scoped`` without the lock, returning None for a miss."""
    stmt = _scoped_select(model, pk, scope, include_archived)
    return db.session.execute(stmt).scalar_one_or_none()
