"""
Inspection query layer — scoped reads and mutations.

Test blocks:
  1. list_inspections — isolation per role, ordering, status filter
  2. Impersonation equivalence — SUPER_ADMIN acting as org X == ADMIN of X
  3. delete_inspection — scope, preconditions, audit
  4. create_on_demand — scope checks and delegation
  5. record_item_result / submit_inspection
  6. inspection_stats
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from inspection_platform.core.exceptions import (
    AccessDeniedError,
    InvalidAssignmentError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from inspection_platform.models import db
from inspection_platform.models.audit import AuditLog, write_audit
from inspection_platform.models.auth import Roles
from inspection_platform.models.inspection import (
    InspectionInstance,
    InspectionReport,
    InspectionStatus,
    ReportItem,
)
from inspection_platform.models.template import ChecklistItem
from inspection_platform.services import audit_service, inspection_service
from inspection_platform.services.scope_resolver import resolve_scope
from inspection_platform.services.status_engine import DerivedStatus
from inspection_platform.utils.helpers import as_utc

from conftest import NOW, make_instance


def _scope(org_tree, who):
    """Resolve the scope of one of the org_tree users."""
    claims = {
        "super_admin": (Roles.SUPER_ADMIN, None, None),
        "admin_a": (Roles.ADMIN, org_tree["org_a"], None),
        "admin_b": (Roles.ADMIN, org_tree["org_b"], None),
        "mini_a2": (Roles.MINI_ADMIN, org_tree["org_a"], org_tree["area_a2"]),
        "inspector_a": (Roles.INSPECTOR, org_tree["org_a"], org_tree["area_a"]),
        "inspector_b": (Roles.INSPECTOR, org_tree["org_b"], org_tree["area_b"]),
    }
    role, org_id, area_id = claims[who]
    return resolve_scope(role=role, organization_id=org_id, area_id=area_id,
                         actor_id=org_tree[who])


@pytest.fixture()
def seeded(org_tree):
    """Instances across both organizations and both areas of org A."""
    t = org_tree
    rows = {
        "a_overdue": make_instance(template_id=t["template_a"], department_id=t["dept_a"],
                                   inspector_id=t["inspector_a"],
                                   due_date=NOW - timedelta(days=2)),
        "a_pending": make_instance(template_id=t["template_a"], department_id=t["dept_a"],
                                   inspector_id=t["inspector_a"],
                                   due_date=NOW + timedelta(days=10)),
        "a_done": make_instance(template_id=t["template_a"], department_id=t["dept_a"],
                                inspector_id=t["inspector_a"],
                                due_date=NOW - timedelta(days=30),
                                status=InspectionStatus.COMPLETED,
                                completed_at=NOW - timedelta(days=20)),
        "a2_soon": make_instance(template_id=t["template_a"], department_id=t["dept_a2"],
                                 inspector_id=t["inspector_a2"],
                                 due_date=NOW + timedelta(days=1)),
        "b_soon": make_instance(template_id=t["template_b"], department_id=t["dept_b"],
                                inspector_id=t["inspector_b"],
                                due_date=NOW + timedelta(days=2)),
    }
    db.session.commit()
    return {name: inst.id for name, inst in rows.items()}


def _ids(rows):
    return [r["id"] for r in rows]


# ═══════════════════════════════════════════════════════════════════════════════
# Block 1: list_inspections
# ═══════════════════════════════════════════════════════════════════════════════

class TestListIsolation:

    def test_admin_sees_only_own_organization(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW)
        assert seeded["b_soon"] not in _ids(rows)
        assert {r["department_id"] for r in rows} <= {org_tree["dept_a"], org_tree["dept_a2"]}
        assert len(rows) == 4

    def test_other_admin_sees_only_theirs(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "admin_b"), now=NOW)
        assert _ids(rows) == [seeded["b_soon"]]

    def test_mini_admin_sees_only_area(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "mini_a2"), now=NOW)
        assert _ids(rows) == [seeded["a2_soon"]]

    def test_inspector_sees_only_assigned(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "inspector_a"), now=NOW)
        assert {r["inspector_id"] for r in rows} == {org_tree["inspector_a"]}
        assert len(rows) == 3

    def test_platform_scope_refused(self, org_tree, seeded):
        with pytest.raises(AccessDeniedError):
            inspection_service.list_inspections(_scope(org_tree, "super_admin"), now=NOW)


class TestListOrdering:

    def test_status_priority_then_due_date(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW)
        assert _ids(rows) == [seeded["a_overdue"], seeded["a2_soon"],
                              seeded["a_pending"], seeded["a_done"]]
        assert [r["derived_status"] for r in rows] == [
            DerivedStatus.OVERDUE, DerivedStatus.DUE_SOON,
            DerivedStatus.PENDING, DerivedStatus.COMPLETED,
        ]

    def test_buffer_override_changes_classification(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW,
                                                   buffer_days=14)
        by_id = {r["id"]: r["derived_status"] for r in rows}
        assert by_id[seeded["a_pending"]] == DerivedStatus.DUE_SOON

    def test_status_filter(self, org_tree, seeded):
        rows = inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW,
                                                   status=DerivedStatus.OVERDUE)
        assert _ids(rows) == [seeded["a_overdue"]]

    def test_unknown_status_filter(self, org_tree, seeded):
        with pytest.raises(ValidationError):
            inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW,
                                                status="late")

    def test_negative_buffer_rejected(self, org_tree, seeded):
        with pytest.raises(ValidationError):
            inspection_service.list_inspections(_scope(org_tree, "admin_a"), now=NOW,
                                                buffer_days=-1)


class TestImpersonation:

    def test_act_as_matches_admin_list(self, org_tree, seeded):
        admin_rows = inspection_service.list_inspections(_scope(org_tree, "admin_b"), now=NOW)
        acting = resolve_scope(role=Roles.SUPER_ADMIN, organization_id=None, area_id=None,
                               requested_org_id=org_tree["org_b"],
                               actor_id=org_tree["super_admin"])
        assert inspection_service.list_inspections(acting, now=NOW) == admin_rows

    def test_act_as_stats_match_admin(self, org_tree, seeded):
        acting = resolve_scope(role=Roles.SUPER_ADMIN, organization_id=None, area_id=None,
                               requested_org_id=org_tree["org_a"],
                               actor_id=org_tree["super_admin"])
        assert inspection_service.inspection_stats(acting, now=NOW) == \
            inspection_service.inspection_stats(_scope(org_tree, "admin_a"), now=NOW)


# ═══════════════════════════════════════════════════════════════════════════════
# Block 3: delete_inspection
# ═══════════════════════════════════════════════════════════════════════════════

class TestDelete:

    def test_admin_deletes_pending(self, org_tree, seeded):
        inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["a_pending"])
        assert db.session.get(InspectionInstance, seeded["a_pending"]) is None

        log = AuditLog.query.filter_by(action="DELETE_INSPECTION").one()
        assert log.entity_id == str(seeded["a_pending"])
        assert log.actor_user_id == org_tree["admin_a"]
        assert log.organization_id == org_tree["org_a"]

    def test_other_organization_is_not_found(self, org_tree, seeded):
        with pytest.raises(NotFoundError):
            inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["b_soon"])
        assert db.session.get(InspectionInstance, seeded["b_soon"]) is not None

    def test_mini_admin_outside_area_is_not_found(self, org_tree, seeded):
        with pytest.raises(NotFoundError):
            inspection_service.delete_inspection(_scope(org_tree, "mini_a2"), seeded["a_pending"])

    def test_inspector_forbidden(self, org_tree, seeded):
        with pytest.raises(AccessDeniedError):
            inspection_service.delete_inspection(_scope(org_tree, "inspector_a"),
                                                 seeded["a_pending"])

    def test_unscoped_super_admin_forbidden(self, org_tree, seeded):
        with pytest.raises(AccessDeniedError):
            inspection_service.delete_inspection(_scope(org_tree, "super_admin"),
                                                 seeded["a_pending"])

    def test_started_inspection_refused(self, org_tree, seeded):
        instance = db.session.get(InspectionInstance, seeded["a_pending"])
        instance.status = InspectionStatus.IN_PROGRESS
        db.session.commit()

        with pytest.raises(PreconditionFailedError):
            inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["a_pending"])
        assert db.session.get(InspectionInstance, seeded["a_pending"]) is not None

    def test_completed_inspection_refused(self, org_tree, seeded):
        with pytest.raises(PreconditionFailedError):
            inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["a_done"])

    def test_pending_with_report_items_refused(self, org_tree, seeded):
        item = ChecklistItem.query.filter_by(template_id=org_tree["template_a"]).first()
        report = InspectionReport(instance_id=seeded["a_pending"])
        report.items.append(ReportItem(checklist_item_id=item.id, approved=True))
        db.session.add(report)
        db.session.commit()

        with pytest.raises(PreconditionFailedError):
            inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["a_pending"])
        instance = db.session.get(InspectionInstance, seeded["a_pending"])
        assert instance.status == InspectionStatus.PENDING
        assert instance.report_item_count == 1

    def test_audit_failure_does_not_undo_delete(self, org_tree, seeded, monkeypatch):
        def broken(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr(audit_service, "write_audit", broken)
        inspection_service.delete_inspection(_scope(org_tree, "admin_a"), seeded["a_pending"])
        assert db.session.get(InspectionInstance, seeded["a_pending"]) is None

    def test_unknown_audit_action_rejected(self, org_tree, seeded):
        with pytest.raises(ValueError):
            write_audit(entity_type="InspectionInstance", entity_id=seeded["a_pending"],
                        action="RENAME_INSPECTION")
        with pytest.raises(ValueError):
            write_audit(entity_type="Department", entity_id=org_tree["dept_a"],
                        action="DELETE_INSPECTION")

        assert audit_service.record_audit(org_tree["admin_a"], "RENAME_INSPECTION",
                                          "InspectionInstance", seeded["a_pending"]) is False
        assert AuditLog.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Block 4: create_on_demand
# ═══════════════════════════════════════════════════════════════════════════════

class TestCreateOnDemand:

    def test_admin_creates(self, org_tree):
        due = datetime(2024, 2, 1, tzinfo=timezone.utc)
        instance = inspection_service.create_on_demand(
            _scope(org_tree, "admin_a"), org_tree["template_a"], org_tree["inspector_a"],
            due, now=NOW,
        )
        assert instance.department_id == org_tree["dept_a"]
        assert as_utc(instance.due_date) == due
        assert AuditLog.query.filter_by(action="CREATE_INSPECTION").count() == 1

    def test_acting_super_admin_creates(self, org_tree):
        acting = resolve_scope(role=Roles.SUPER_ADMIN, organization_id=None, area_id=None,
                               requested_org_id=org_tree["org_b"],
                               actor_id=org_tree["super_admin"])
        instance = inspection_service.create_on_demand(
            acting, org_tree["template_b"], org_tree["inspector_b"], now=NOW,
        )
        assert instance.department_id == org_tree["dept_b"]

    def test_template_of_other_organization_not_found(self, org_tree):
        with pytest.raises(NotFoundError):
            inspection_service.create_on_demand(
                _scope(org_tree, "admin_a"), org_tree["template_b"], org_tree["inspector_b"],
                now=NOW,
            )

    def test_inspector_of_other_organization_invalid(self, org_tree):
        with pytest.raises(InvalidAssignmentError):
            inspection_service.create_on_demand(
                _scope(org_tree, "admin_a"), org_tree["template_a"], org_tree["inspector_b"],
                now=NOW,
            )

    def test_mini_admin_limited_to_area(self, org_tree):
        scope = _scope(org_tree, "mini_a2")
        instance = inspection_service.create_on_demand(
            scope, org_tree["template_a"], org_tree["inspector_a2"], now=NOW,
        )
        assert instance.department_id == org_tree["dept_a2"]

        with pytest.raises(NotFoundError):
            inspection_service.create_on_demand(
                scope, org_tree["template_a"], org_tree["inspector_a"], now=NOW,
            )

    def test_inspector_cannot_create(self, org_tree):
        with pytest.raises(AccessDeniedError):
            inspection_service.create_on_demand(
                _scope(org_tree, "inspector_a"), org_tree["template_a"],
                org_tree["inspector_a"], now=NOW,
            )


# ═══════════════════════════════════════════════════════════════════════════════
# Block 5: record_item_result / submit_inspection
# ═══════════════════════════════════════════════════════════════════════════════

def _checklist(template_id):
    return [i.id for i in ChecklistItem.query.filter_by(template_id=template_id)
            .order_by(ChecklistItem.sort_order)]


class TestExecution:

    def test_first_result_starts_inspection(self, org_tree, seeded):
        scope = _scope(org_tree, "inspector_a")
        item_id = _checklist(org_tree["template_a"])[0]
        result = inspection_service.record_item_result(scope, seeded["a_pending"], item_id, True)
        assert result["instance_status"] == InspectionStatus.IN_PROGRESS
        assert result["item"]["approved"] is True

    def test_result_is_upserted(self, org_tree, seeded):
        scope = _scope(org_tree, "inspector_a")
        item_id = _checklist(org_tree["template_a"])[0]
        inspection_service.record_item_result(scope, seeded["a_pending"], item_id, True)
        inspection_service.record_item_result(scope, seeded["a_pending"], item_id, False, "Blocked")
        assert db.session.execute(select(func.count(ReportItem.id))).scalar_one() == 1
        assert ReportItem.query.one().comments == "Blocked"

    def test_item_from_other_template_not_found(self, org_tree, seeded):
        foreign = _checklist(org_tree["template_b"])[0]
        with pytest.raises(NotFoundError):
            inspection_service.record_item_result(_scope(org_tree, "inspector_a"),
                                                  seeded["a_pending"], foreign, True)

    def test_other_inspector_cannot_record(self, org_tree, seeded):
        item_id = _checklist(org_tree["template_a"])[0]
        with pytest.raises(NotFoundError):
            inspection_service.record_item_result(_scope(org_tree, "inspector_b"),
                                                  seeded["a_pending"], item_id, True)

    def test_submit_requires_all_items(self, org_tree, seeded):
        scope = _scope(org_tree, "inspector_a")
        first, _second = _checklist(org_tree["template_a"])
        inspection_service.record_item_result(scope, seeded["a_pending"], first, True)
        with pytest.raises(PreconditionFailedError):
            inspection_service.submit_inspection(scope, seeded["a_pending"], now=NOW)

    def test_submit_completes_and_locks(self, org_tree, seeded):
        scope = _scope(org_tree, "inspector_a")
        for item_id in _checklist(org_tree["template_a"]):
            inspection_service.record_item_result(scope, seeded["a_pending"], item_id, True)

        data = inspection_service.submit_inspection(scope, seeded["a_pending"], now=NOW)
        assert data["status"] == InspectionStatus.COMPLETED
        assert data["derived_status"] == DerivedStatus.COMPLETED

        instance = db.session.get(InspectionInstance, seeded["a_pending"])
        assert instance.report.locked is True
        with pytest.raises(PreconditionFailedError):
            inspection_service.record_item_result(
                scope, seeded["a_pending"], _checklist(org_tree["template_a"])[0], False,
            )
        with pytest.raises(PreconditionFailedError):
            inspection_service.submit_inspection(scope, seeded["a_pending"], now=NOW)

    def test_completed_at_never_before_created_at(self, org_tree, seeded):
        instance = db.session.get(InspectionInstance, seeded["a_pending"])
        instance.created_at = NOW + timedelta(hours=2)
        db.session.commit()

        scope = _scope(org_tree, "inspector_a")
        for item_id in _checklist(org_tree["template_a"]):
            inspection_service.record_item_result(scope, seeded["a_pending"], item_id, True)
        inspection_service.submit_inspection(scope, seeded["a_pending"], now=NOW)

        instance = db.session.get(InspectionInstance, seeded["a_pending"])
        assert as_utc(instance.completed_at) >= as_utc(instance.created_at)

    def test_get_inspection_includes_progress(self, org_tree, seeded):
        scope = _scope(org_tree, "admin_a")
        item_id = _checklist(org_tree["template_a"])[0]
        inspection_service.record_item_result(scope, seeded["a_pending"], item_id, True)

        data = inspection_service.get_inspection(scope, seeded["a_pending"], now=NOW)
        assert data["checklist_size"] == 2
        assert data["report_item_count"] == 1
        assert data["report"]["locked"] is False
        assert data["derived_status"] == DerivedStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════════════
# Block 6: inspection_stats
# ═══════════════════════════════════════════════════════════════════════════════

class TestStats:

    def test_organization_counts(self, org_tree, seeded):
        stats = inspection_service.inspection_stats(_scope(org_tree, "admin_a"), now=NOW)
        assert stats == {
            "scope": "organization", "total": 4, "active": 3, "completed": 1,
            "pending": 1, "due_soon": 1, "overdue": 1,
        }

    def test_platform_aggregates(self, org_tree, seeded):
        stats = inspection_service.inspection_stats(_scope(org_tree, "super_admin"), now=NOW)
        assert stats["scope"] == "platform"
        assert stats["organizations"] == 2
        assert stats["users"] == 7
        assert stats["active_inspections"] == 4
