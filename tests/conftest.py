"""
Shared pytest fixtures for the Audit CAPA Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org: Pre-created tenant with auditor, HODs, departments, MR role and audit
    - channel: Recording realtime channel (replaces Socket.IO in the app too)
    - workflow: factory building a CapaWorkflow wired to the recording channel
"""

from types import SimpleNamespace

import pytest

from auditcapa import REALTIME_EXTENSION, create_app
from auditcapa.core.exceptions import DeliveryError
from auditcapa.models import db as _db
from auditcapa.models.auth import Department, Role, Tenant, User, UserDepartmentRole, UserRole
from auditcapa.models.finding import Audit, Finding
from auditcapa.services.capa_workflow import CapaWorkflow
from auditcapa.services.finding_service import categorize_finding
from auditcapa.services.notification import NotificationService
from auditcapa.services.notification_dispatcher import NotificationDispatcher


# ── Test doubles ─────────────────────────────────────────────────────────


class RecordingChannel:
    """Realtime channel double; records pushes, fails for chosen users."""

    def __init__(self, available=True):
        self._available = available
        self.pushes = []
        self.fail_for = set()

    @property
    def available(self):
        return self._available

    def push_to_user(self, user_id, payload):
        if not self._available:
            raise DeliveryError("realtime", "Socket.io server not initialised")
        if user_id in self.fail_for:
            raise DeliveryError("realtime", "connection reset")
        self.pushes.append((user_id, payload))


class FailingStore:
    """Notification store double; durable writes fail for chosen users."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)

    def create(self, **kwargs):
        if kwargs["target_user_id"] in self.fail_for:
            raise RuntimeError("notifications table unavailable")
        return NotificationService.create(**kwargs)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def channel(app):
    """Recording realtime channel, also installed as the app's channel."""
    recording = RecordingChannel()
    previous = app.extensions[REALTIME_EXTENSION]
    app.extensions[REALTIME_EXTENSION] = recording
    yield recording
    app.extensions[REALTIME_EXTENSION] = previous


# ── Organisation factories ───────────────────────────────────────────────


def make_tenant(name="Acme Manufacturing", slug="acme"):
    t = Tenant(name=name, slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(tenant, first, last, status="active"):
    u = User(
        tenant_id=tenant.id,
        email=f"{first.lower()}.{last.lower()}@{tenant.slug}.test",
        first_name=first,
        last_name=last,
        status=status,
    )
    _db.session.add(u)
    _db.session.flush()
    return u


def make_department(tenant, name, hod=None):
    d = Department(tenant_id=tenant.id, name=name, hod_id=hod.id if hod else None)
    _db.session.add(d)
    _db.session.flush()
    return d


def make_role(name, tenant=None):
    r = Role(tenant_id=tenant.id if tenant else None, name=name)
    _db.session.add(r)
    _db.session.flush()
    return r


def grant_role(user, role):
    _db.session.add(UserRole(user_id=user.id, role_id=role.id))
    _db.session.flush()


def grant_department_role(user, department, role):
    _db.session.add(UserDepartmentRole(
        tenant_id=user.tenant_id, user_id=user.id, department_id=department.id, role_id=role.id,
    ))
    _db.session.flush()


def make_finding(org, department="Quality", secondary=None, title="Calibration records missing",
                 description="Two gauges had no calibration certificate on file."):
    f = Finding(
        tenant_id=org.tenant.id,
        audit_id=org.audit.id,
        created_by_id=org.auditor.id,
        department=department,
        secondary_departments=list(secondary or []),
        title=title,
        description=description,
    )
    _db.session.add(f)
    _db.session.commit()
    return f


def open_case(org, category="NON_CONFORMITY", **finding_kwargs):
    """Create a finding, categorize it and return its CAPA case."""
    finding = make_finding(org, **finding_kwargs)
    result = categorize_finding(
        finding.id, category, tenant_id=org.tenant.id, actor_id=org.auditor.id,
    )
    return result["case"]


@pytest.fixture()
def org():
    """A tenant with an auditor, two staffed departments, one vacant department and an MR."""
    tenant = make_tenant()
    auditor = make_user(tenant, "Alice", "Auditor")
    hod_quality = make_user(tenant, "Quinn", "Quality")
    hod_ops = make_user(tenant, "Owen", "Operations")
    mr = make_user(tenant, "Morgan", "Rep")

    quality = make_department(tenant, "Quality", hod=hod_quality)
    operations = make_department(tenant, "Operations", hod=hod_ops)
    vacant = make_department(tenant, "Logistics")

    audit = Audit(
        tenant_id=tenant.id, title="ISO 9001 surveillance",
        audit_number="AUD-2026-014", program_name="QMS 2026",
    )
    _db.session.add(audit)
    _db.session.commit()

    return SimpleNamespace(
        tenant=tenant,
        auditor=auditor,
        hod_quality=hod_quality,
        hod_ops=hod_ops,
        mr=mr,
        quality=quality,
        operations=operations,
        vacant=vacant,
        audit=audit,
    )


@pytest.fixture()
def mr_role(org):
    """Tenant MR role held globally by ``org.mr``."""
    role = make_role("MR", org.tenant)
    grant_role(org.mr, role)
    _db.session.commit()
    return role


@pytest.fixture()
def workflow(org):
    """Factory: ``workflow("corrective", channel=..., store=...)``."""

    def _build(kind="corrective", channel=None, store=None, **kwargs):
        dispatcher = NotificationDispatcher(store=store, channel=channel or RecordingChannel())
        return CapaWorkflow(kind, org.tenant.id, dispatcher=dispatcher, **kwargs)

    return _build
