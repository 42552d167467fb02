"""
Inspection query layer — scoped listings and mutations.

Every function takes a ``ResolvedScope`` built per request by
``scope_resolver.resolve_scope``; nothing here reads ``flask.g`` or the
session. Single-instance operations look the instance up through the same
scope predicate as ``list_inspections``, so an out-of-scope id reads as
NotFoundError (404) and never confirms that the row exists.

Layer contract:
    - Blueprint parses input and maps exceptions to HTTP.
    - This module owns validation, the commit, and the best-effort audit
      call that follows each successful mutation.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select

from inspection_platform.core.exceptions import (
    AccessDeniedError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from inspection_platform.models import db
from inspection_platform.models.auth import User
from inspection_platform.models.inspection import (
    INITIAL_STATUS,
    OPEN_STATUSES,
    InspectionInstance,
    InspectionReport,
    InspectionStatus,
    ReportItem,
)
from inspection_platform.models.organization import Organization
from inspection_platform.models.template import ChecklistItem, MasterTemplate
from inspection_platform.services import recurrence_scheduler
from inspection_platform.services.audit_service import record_audit
from inspection_platform.services.helpers.scoped_queries import (
    department_in_scope,
    get_scoped,
    get_scoped_instance,
    scoped_instance_select,
)
from inspection_platform.services.scope_resolver import ResolvedScope
from inspection_platform.services.status_engine import (
    DERIVED_STATUSES,
    DerivedStatus,
    StatusInfo,
    describe_status,
    status_sort_key,
)
from inspection_platform.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_ENTITY = "InspectionInstance"


# ── Private helpers ────────────────────────────────────────────────────────────


def _check_buffer(buffer_days: int | None) -> None:
    if buffer_days is not None and buffer_days < 0:
        raise ValidationError("buffer_days must be >= 0", details={"buffer_days": buffer_days})


def _require_manager(scope: ResolvedScope, action: str) -> None:
    if not scope.can_manage:
        logger.warning("Denied %s for role=%s actor_id=%s", action, scope.role, scope.actor_id)
        raise AccessDeniedError(f"Not allowed to {action} inspections", reason=f"{action}_requires_admin")


def _serialize(instance: InspectionInstance, info: StatusInfo) -> dict:
    data = instance.to_dict()
    data["derived_status"] = info.status
    data["status_info"] = info.to_dict()
    return data


def _organization_of(instance: InspectionInstance) -> int | None:
    return instance.department.organization_id if instance.department else None


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def list_inspections(
    scope: ResolvedScope,
    *,
    now: datetime,
    buffer_days: int | None = None,
    status: str | None = None,
) -> list[dict]:
    """Instances visible to *scope*, enriched with derived status and sorted.

    Order: overdue, due-soon, pending, completed; then due date ascending,
    then id. ``status`` filters on the derived value.
    """
    _check_buffer(buffer_days)
    if status is not None and status not in DERIVED_STATUSES:
        raise ValidationError(
            f"Unknown status filter '{status}'",
            details={"status": status, "valid": list(DERIVED_STATUSES)},
        )

    instances = db.session.execute(scoped_instance_select(scope)).scalars().all()

    rows = []
    for instance in instances:
        info = describe_status(instance.due_date, instance.completed_at, buffer_days, now=now)
        if status is not None and info.status != status:
            continue
        rows.append((status_sort_key(info.status, instance.due_date, instance.id), instance, info))

    rows.sort(key=lambda row: row[0])
    return [_serialize(instance, info) for _key, instance, info in rows]


def get_inspection(
    scope: ResolvedScope,
    instance_id: int,
    *,
    now: datetime,
    buffer_days: int | None = None,
) -> dict:
    """One instance with derived status, checklist and report progress."""
    _check_buffer(buffer_days)
    instance = get_scoped_instance(scope, instance_id)
    info = describe_status(instance.due_date, instance.completed_at, buffer_days, now=now)

    data = _serialize(instance, info)
    data["checklist"] = [item.to_dict() for item in instance.template.checklist_items]
    data["checklist_size"] = len(data["checklist"])
    data["report"] = instance.report.to_dict() if instance.report else None
    return data


def inspection_stats(
    scope: ResolvedScope,
    *,
    now: datetime,
    buffer_days: int | None = None,
) -> dict:
    """Counts by derived status, or cross-tenant aggregates for the platform scope."""
    _check_buffer(buffer_days)

    if scope.is_unscoped:
        active = db.session.execute(
            select(func.count(InspectionInstance.id))
            .where(InspectionInstance.status.in_(OPEN_STATUSES))
        ).scalar_one()
        return {
            "scope": scope.level,
            "organizations": db.session.execute(select(func.count(Organization.id))).scalar_one(),
            "users": db.session.execute(select(func.count(User.id))).scalar_one(),
            "active_inspections": active,
        }

    counts = {s: 0 for s in DERIVED_STATUSES}
    instances = db.session.execute(scoped_instance_select(scope)).scalars().all()
    for instance in instances:
        status = describe_status(instance.due_date, instance.completed_at, buffer_days, now=now).status
        counts[status] += 1

    total = len(instances)
    return {
        "scope": scope.level,
        "total": total,
        "active": total - counts[DerivedStatus.COMPLETED],
        "completed": counts[DerivedStatus.COMPLETED],
        "pending": counts[DerivedStatus.PENDING],
        "due_soon": counts[DerivedStatus.DUE_SOON],
        "overdue": counts[DerivedStatus.OVERDUE],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════


def delete_inspection(scope: ResolvedScope, instance_id: int) -> None:
    """Delete an instance that has not started.

    Raises:
        AccessDeniedError: scope is not an administrator scope.
        NotFoundError: instance missing or outside scope.
        PreconditionFailedError: status is not PENDING or report items exist.
    """
    _require_manager(scope, "delete")
    instance = get_scoped_instance(scope, instance_id)

    if instance.status != INITIAL_STATUS or instance.report_item_count > 0:
        logger.info(
            "Refused delete of started inspection id=%s status=%s items=%d",
            instance.id, instance.status, instance.report_item_count,
        )
        raise PreconditionFailedError("Cannot delete an inspection that has already started")

    organization_id = _organization_of(instance)
    snapshot = {
        "template_id": instance.template_id,
        "department_id": instance.department_id,
        "inspector_id": instance.inspector_id,
        "due_date": instance.due_date.isoformat() if instance.due_date else None,
    }
    db.session.delete(instance)
    db.session.commit()
    logger.info("InspectionInstance deleted id=%s by actor=%s", instance_id, scope.actor_id)

    record_audit(scope.actor_id, "DELETE_INSPECTION", _ENTITY, instance_id,
                 organization_id=organization_id, diff=snapshot)


def create_on_demand(
    scope: ResolvedScope,
    template_id: int,
    inspector_id: int,
    due_date: datetime | None = None,
    department_id: int | None = None,
    *,
    now: datetime,
) -> InspectionInstance:
    """Create an ad hoc instance after checking template and department are in scope."""
    _require_manager(scope, "create")

    template = get_scoped(MasterTemplate, template_id, organization_id=scope.organization_id)
    inspector = recurrence_scheduler.load_inspector(template, inspector_id)
    department = recurrence_scheduler.resolve_department(template, inspector, department_id)
    if not department_in_scope(scope, department):
        raise NotFoundError(resource="Department", resource_id=department.id)

    instance = recurrence_scheduler.create_instance(
        template.id, inspector.id, due_date, department_id=department.id, now=now,
    )

    record_audit(scope.actor_id, "CREATE_INSPECTION", _ENTITY, instance.id,
                 organization_id=template.organization_id,
                 diff={
                     "template_id": instance.template_id,
                     "department_id": instance.department_id,
                     "inspector_id": instance.inspector_id,
                     "due_date": instance.due_date.isoformat(),
                 })
    return instance


def record_item_result(
    scope: ResolvedScope,
    instance_id: int,
    checklist_item_id: int,
    approved: bool,
    comments: str | None = None,
) -> dict:
    """Upsert one checklist result; the first result moves PENDING to IN_PROGRESS."""
    instance = get_scoped_instance(scope, instance_id)
    report = instance.report
    if instance.status == InspectionStatus.COMPLETED or (report is not None and report.locked):
        raise PreconditionFailedError("Inspection is already completed")

    item = db.session.get(ChecklistItem, checklist_item_id)
    if item is None or item.template_id != instance.template_id:
        raise NotFoundError(resource="ChecklistItem", resource_id=checklist_item_id)

    if report is None:
        report = InspectionReport(instance=instance)
        db.session.add(report)

    result = next((r for r in report.items if r.checklist_item_id == item.id), None)
    if result is None:
        result = ReportItem(checklist_item_id=item.id)
        report.items.append(result)
    result.approved = bool(approved)
    result.comments = comments

    if instance.status == InspectionStatus.PENDING:
        instance.status = InspectionStatus.IN_PROGRESS
    db.session.commit()

    record_audit(scope.actor_id, "RECORD_ITEM_RESULT", _ENTITY, instance.id,
                 organization_id=_organization_of(instance),
                 diff={"checklist_item_id": item.id, "approved": result.approved})
    return {"item": result.to_dict(), "instance_status": instance.status}


def submit_inspection(
    scope: ResolvedScope,
    instance_id: int,
    *,
    now: datetime,
    buffer_days: int | None = None,
) -> dict:
    """Complete an inspection once every checklist item has a result.

    ``completed_at`` is clamped to ``created_at`` so it never precedes it.
    """
    instance = get_scoped_instance(scope, instance_id)
    if instance.status == InspectionStatus.COMPLETED:
        raise PreconditionFailedError("Inspection is already completed")

    checklist_size = len(instance.template.checklist_items)
    report = instance.report
    if report is None or len(report.items) < checklist_size:
        raise PreconditionFailedError("All checklist items must be recorded before submitting")

    completed_at = max(as_utc(now), as_utc(instance.created_at))
    instance.status = InspectionStatus.COMPLETED
    instance.completed_at = completed_at
    report.locked = True
    report.submitted_at = completed_at
    db.session.commit()
    logger.info("InspectionInstance submitted id=%s by actor=%s", instance.id, scope.actor_id)

    record_audit(scope.actor_id, "SUBMIT_INSPECTION", _ENTITY, instance.id,
                 organization_id=_organization_of(instance),
                 diff={"completed_at": completed_at.isoformat()})

    info = describe_status(instance.due_date, instance.completed_at, buffer_days, now=now)
    return _serialize(instance, info)
