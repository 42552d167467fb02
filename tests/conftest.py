"""
Shared pytest fixtures for the Inspection Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org_tree: two organizations with areas, departments, users, templates
    - NOW: fixed clock used by service-level tests
"""

from datetime import date, datetime, timezone

import pytest

from inspection_platform import create_app
from inspection_platform.models import db as _db
from inspection_platform.models.auth import Roles, User
from inspection_platform.models.inspection import InspectionInstance, InspectionStatus
from inspection_platform.models.organization import Area, Department, Organization
from inspection_platform.models.template import ChecklistItem, MasterTemplate, TemplateDepartment
from inspection_platform.services.jwt_service import generate_access_token

NOW = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


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


# ── Factory helpers ──────────────────────────────────────────────────────


def make_user(*, email, role, organization_id=None, area_id=None,
              department_id=None, name=None, is_active=True):
    user = User(
        email=email, name=name or email.split("@")[0], role=role,
        organization_id=organization_id, area_id=area_id,
        department_id=department_id, is_active=is_active,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


def make_template(*, organization_id, name="Fire Safety", cadence_type="interval",
                  cadence_config=None, frequency=None, anchor_date=None,
                  lead_days=0, items=("Extinguisher", "Exit signs"), targets=()):
    """Template with checklist items; targets are (department_id, default_inspector_id) pairs."""
    template = MasterTemplate(
        organization_id=organization_id, name=name,
        cadence_type=cadence_type,
        cadence_config=cadence_config if cadence_config is not None else {"days": 7},
        frequency=frequency, anchor_date=anchor_date, lead_days=lead_days,
    )
    _db.session.add(template)
    _db.session.flush()
    for order, title in enumerate(items):
        _db.session.add(ChecklistItem(template_id=template.id, title=title, sort_order=order))
    for department_id, inspector_id in targets:
        _db.session.add(TemplateDepartment(
            template_id=template.id, department_id=department_id,
            default_inspector_id=inspector_id,
        ))
    _db.session.flush()
    return template


def make_instance(*, template_id, department_id, inspector_id, due_date,
                  status=InspectionStatus.PENDING, completed_at=None,
                  created_at=None, period_key=None):
    instance = InspectionInstance(
        template_id=template_id, department_id=department_id,
        inspector_id=inspector_id, due_date=due_date, status=status,
        completed_at=completed_at, period_key=period_key,
        created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    _db.session.add(instance)
    _db.session.flush()
    return instance


def auth_header(user_id, role, organization_id=None, area_id=None):
    token = generate_access_token(user_id, role, organization_id, area_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def org_tree():
    """Two organizations, each with one area and department, users and a weekly template.

    Organization A additionally has a second area (North) with its own
    department and MINI_ADMIN. Returns IDs, not ORM objects.
    """
    org_a = Organization(name="Acme Plant")
    org_b = Organization(name="Beta Works")
    _db.session.add_all([org_a, org_b])
    _db.session.flush()

    area_a = Area(organization_id=org_a.id, name="South")
    area_a2 = Area(organization_id=org_a.id, name="North")
    area_b = Area(organization_id=org_b.id, name="Main")
    _db.session.add_all([area_a, area_a2, area_b])
    _db.session.flush()

    dept_a = Department(area=area_a, name="Warehouse")
    dept_a2 = Department(area=area_a2, name="Kitchen")
    dept_b = Department(area=area_b, name="Assembly")
    _db.session.add_all([dept_a, dept_a2, dept_b])
    _db.session.flush()

    super_admin = make_user(email="root@platform.test", role=Roles.SUPER_ADMIN)
    admin_a = make_user(email="admin@acme.test", role=Roles.ADMIN, organization_id=org_a.id)
    admin_b = make_user(email="admin@beta.test", role=Roles.ADMIN, organization_id=org_b.id)
    mini_a2 = make_user(email="north@acme.test", role=Roles.MINI_ADMIN,
                        organization_id=org_a.id, area_id=area_a2.id)
    inspector_a = make_user(email="insp@acme.test", role=Roles.INSPECTOR,
                            organization_id=org_a.id, area_id=area_a.id,
                            department_id=dept_a.id)
    inspector_a2 = make_user(email="insp-north@acme.test", role=Roles.INSPECTOR,
                             organization_id=org_a.id, area_id=area_a2.id,
                             department_id=dept_a2.id)
    inspector_b = make_user(email="insp@beta.test", role=Roles.INSPECTOR,
                            organization_id=org_b.id, area_id=area_b.id,
                            department_id=dept_b.id)

    template_a = make_template(
        organization_id=org_a.id,
        targets=[(dept_a.id, inspector_a.id), (dept_a2.id, inspector_a2.id)],
        anchor_date=date(2024, 1, 8),
    )
    template_b = make_template(
        organization_id=org_b.id, name="Machine Guarding",
        targets=[(dept_b.id, inspector_b.id)],
        anchor_date=date(2024, 1, 8),
    )
    _db.session.commit()

    return {
        "org_a": org_a.id, "org_b": org_b.id,
        "area_a": area_a.id, "area_a2": area_a2.id, "area_b": area_b.id,
        "dept_a": dept_a.id, "dept_a2": dept_a2.id, "dept_b": dept_b.id,
        "super_admin": super_admin.id,
        "admin_a": admin_a.id, "admin_b": admin_b.id, "mini_a2": mini_a2.id,
        "inspector_a": inspector_a.id, "inspector_a2": inspector_a2.id,
        "inspector_b": inspector_b.id,
        "template_a": template_a.id, "template_b": template_b.id,
    }
