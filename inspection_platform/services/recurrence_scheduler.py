"""
Recurrence scheduler — on-demand and scheduled creation of inspection instances.

Entry points:
    create_instance(template_id, inspector_id, due_date=None, now=...)
        Always inserts a new row (ad hoc inspections are allowed).
    run_scheduled_sweep(now, ...)
        For every active recurring template × target department, creates the
        one occurrence that is due and missing.

Duplicate prevention for the sweep lives in the store: each scheduled row
carries ``period_key`` (the ISO due date) under
UNIQUE (template_id, department_id, period_key). Two overlapping sweeps
compute the same next occurrence, the loser hits IntegrityError, and that
is recorded as ``already_exists`` rather than a failure.

Every (template, department) pair is its own transaction: a failure rolls
back that pair only, and a caller deadline stops further pairs without
touching committed ones.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError

from inspection_platform.core.exceptions import (
    ConflictError,
    InvalidAssignmentError,
    NotFoundError,
    ValidationError,
)
from inspection_platform.models import db
from inspection_platform.models.auth import Roles, User
from inspection_platform.models.inspection import (
    OPEN_STATUSES,
    InspectionInstance,
    InspectionStatus,
)
from inspection_platform.models.organization import Department
from inspection_platform.models.template import MasterTemplate, TemplateDepartment
from inspection_platform.services.audit_service import record_audit
from inspection_platform.services.cadence import (
    FALLBACK_INTERVAL_DAYS,
    Cadence,
    IntervalCadence,
    cadence_for_template,
)
from inspection_platform.services.status_engine import DERIVED_STATUSES, derive_status
from inspection_platform.utils.helpers import as_utc, start_of_day

logger = logging.getLogger(__name__)


# ── Sweep outcomes ───────────────────────────────────────────────────────────

class Outcome:
    CREATED = "created"
    SKIPPED = "skipped"                # next occurrence not due yet
    ALREADY_EXISTS = "already_exists"  # lost the race to another sweep
    UNASSIGNED = "unassigned"          # no eligible inspector; nothing created
    FAILED = "failed"
    DEFERRED = "deferred"              # deadline reached before this pair


@dataclass
class PairOutcome:
    template_id: int
    department_id: int | None
    outcome: str
    due_date: date | None = None
    instance_id: int | None = None
    derived_status: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "department_id": self.department_id,
            "outcome": self.outcome,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "instance_id": self.instance_id,
            "derived_status": self.derived_status,
            "message": self.message,
        }


@dataclass
class SweepResult:
    run_at: datetime
    created: list[InspectionInstance] = field(default_factory=list)
    outcomes: list[PairOutcome] = field(default_factory=list)

    def _with(self, outcome: str) -> list[PairOutcome]:
        return [o for o in self.outcomes if o.outcome == outcome]

    @property
    def failures(self) -> list[PairOutcome]:
        return self._with(Outcome.FAILED)

    @property
    def unassigned(self) -> list[PairOutcome]:
        return self._with(Outcome.UNASSIGNED)

    @property
    def deferred(self) -> list[PairOutcome]:
        return self._with(Outcome.DEFERRED)

    @property
    def counts(self) -> dict[str, int]:
        counts = {name: 0 for name in (
            Outcome.CREATED, Outcome.SKIPPED, Outcome.ALREADY_EXISTS,
            Outcome.UNASSIGNED, Outcome.FAILED, Outcome.DEFERRED,
        )}
        for o in self.outcomes:
            counts[o.outcome] += 1
        return counts

    @property
    def created_by_status(self) -> dict[str, int]:
        counts = {status: 0 for status in DERIVED_STATUSES}
        for o in self._with(Outcome.CREATED):
            counts[o.derived_status] += 1
        return counts

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "run_at": self.run_at.isoformat(),
            "counts": self.counts,
            "created": [o.to_dict() for o in self._with(Outcome.CREATED)],
            "created_by_status": self.created_by_status,
            "unassigned": [o.to_dict() for o in self.unassigned],
            "failures": [o.to_dict() for o in self.failures],
            "deferred": [o.to_dict() for o in self.deferred],
        }


# ── Store reads ──────────────────────────────────────────────────────────────

def latest_instance(template_id: int, department_id: int) -> InspectionInstance | None:
    """Most recent instance (by due date) for a template/department pair."""
    stmt = (
        select(InspectionInstance)
        .where(
            InspectionInstance.template_id == template_id,
            InspectionInstance.department_id == department_id,
        )
        .order_by(InspectionInstance.due_date.desc(), InspectionInstance.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def least_loaded_inspector(organization_id: int, department_id: int) -> User | None:
    """Active inspector of the department with the fewest open instances."""
    open_count = func.count(InspectionInstance.id)
    stmt = (
        select(User)
        .outerjoin(
            InspectionInstance,
            and_(
                InspectionInstance.inspector_id == User.id,
                InspectionInstance.status.in_(OPEN_STATUSES),
            ),
        )
        .where(
            User.role == Roles.INSPECTOR,
            User.is_active.is_(True),
            User.organization_id == organization_id,
            User.department_id == department_id,
        )
        .group_by(User.id)
        .order_by(open_count.asc(), User.id.asc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _eligible(user: User | None, organization_id: int) -> bool:
    return (
        user is not None
        and user.is_inspector
        and bool(user.is_active)
        and user.organization_id == organization_id
    )


def resolve_inspector(template: MasterTemplate, target: TemplateDepartment) -> User | None:
    """Default inspector of the target, else the least-loaded department inspector."""
    if target.default_inspector_id is not None:
        user = db.session.get(User, target.default_inspector_id)
        if _eligible(user, template.organization_id):
            return user
        logger.warning(
            "Default inspector %s not eligible for template %s department %s; falling back",
            target.default_inspector_id, template.id, target.department_id,
        )
    return least_loaded_inspector(template.organization_id, target.department_id)


def next_due_date(
    template: MasterTemplate,
    cadence: Cadence,
    department_id: int,
    today: date,
    horizon: date | None = None,
) -> date:
    """Occurrence the pair should hold by *horizon*.

    Starts from the occurrence after the latest due date (or the anchor
    occurrence when the pair has no instances). If that start is inside the
    horizon, steps forward to the last occurrence still inside it: missed
    periods collapse into the current one, so the result for a given
    horizon does not change once that occurrence exists.
    """
    latest = latest_instance(template.id, department_id)
    if latest is None:
        due = cadence.first_on_or_after(template.anchor_date or today)
    else:
        due = cadence.next_after(as_utc(latest.due_date).date())
    if horizon is None or due > horizon:
        return due

    following = cadence.next_after(due)
    while following <= horizon:
        due, following = following, cadence.next_after(following)
    return due


# ═══════════════════════════════════════════════════════════════════════════
#  On-demand creation
# ═══════════════════════════════════════════════════════════════════════════

def default_due_date(template: MasterTemplate, department_id: int, now: datetime) -> datetime:
    """Cadence applied to the pair's latest instance, or to today when there is none."""
    cadence = cadence_for_template(template) or IntervalCadence(FALLBACK_INTERVAL_DAYS)
    latest = latest_instance(template.id, department_id)
    base = as_utc(latest.due_date).date() if latest is not None else as_utc(now).date()
    return start_of_day(cadence.next_after(base))


def load_inspector(template: MasterTemplate, inspector_id: int) -> User:
    """Fetch an inspector and check it may be assigned to *template*."""
    inspector = db.session.get(User, inspector_id)
    if inspector is None:
        raise NotFoundError(resource="Inspector", resource_id=inspector_id)
    if not _eligible(inspector, template.organization_id):
        raise InvalidAssignmentError("Inspector is not eligible for this template's organization")
    return inspector


def resolve_department(template: MasterTemplate, inspector: User, department_id: int | None) -> Department:
    """Department for an on-demand instance: explicit, else the inspector's, else the only target."""
    if department_id is None:
        department_id = inspector.department_id
    if department_id is None and len(template.targets) == 1:
        department_id = template.targets[0].department_id
    if department_id is None:
        raise ValidationError("department_id is required",
                              details={"department_id": "required"})

    department = db.session.get(Department, department_id)
    if department is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    if department.organization_id != template.organization_id:
        raise InvalidAssignmentError("Department does not belong to the template's organization")
    return department


_UNIQUE_VIOLATION = "23505"
_OCCURRENCE_KEY = "template_id/department_id/period_key"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True when the driver reports a unique-key clash rather than a FK or NOT NULL failure."""
    if getattr(exc.orig, "pgcode", None) == _UNIQUE_VIOLATION:
        return True
    return "UNIQUE constraint failed" in str(exc.orig)


def create_instance(
    template_id: int,
    inspector_id: int,
    due_date: datetime | None = None,
    *,
    department_id: int | None = None,
    now: datetime,
) -> InspectionInstance:
    """Create one ad hoc inspection instance.

    Not idempotent: every call inserts a row. The department defaults to the
    inspector's department, then to the template's only target.

    Raises:
        NotFoundError: template, inspector or department missing.
        InvalidAssignmentError: inspector is not an active inspector of the
            template's organization, or the department is in another one.
        ValidationError: no department could be determined.
        ConflictError: an instance already holds the same occurrence key.
        IntegrityError: any other constraint failure, re-raised.
    """
    template = db.session.get(MasterTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="MasterTemplate", resource_id=template_id)

    inspector = load_inspector(template, inspector_id)
    department = resolve_department(template, inspector, department_id)

    if due_date is None:
        due_date = default_due_date(template, department.id, now)

    instance = InspectionInstance(
        template_id=template.id,
        department_id=department.id,
        inspector_id=inspector.id,
        due_date=as_utc(due_date),
        status=InspectionStatus.PENDING,
        period_key=None,
        created_at=as_utc(now),
    )
    db.session.add(instance)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if not _is_unique_violation(exc):
            raise
        raise ConflictError("InspectionInstance", _OCCURRENCE_KEY) from exc
    logger.info(
        "InspectionInstance created id=%s template=%s department=%s inspector=%s due=%s",
        instance.id, template.id, department.id, inspector.id, instance.due_date,
    )
    return instance


# ═══════════════════════════════════════════════════════════════════════════
#  Scheduled sweep
# ═══════════════════════════════════════════════════════════════════════════

def _sweep_pair(target_id: int, now: datetime, buffer_days: int | None) -> tuple[PairOutcome, InspectionInstance | None]:
    target = db.session.get(TemplateDepartment, target_id)
    template = target.template
    department = target.department

    if department.organization_id != template.organization_id:
        return PairOutcome(
            template.id, department.id, Outcome.FAILED,
            message="Department does not belong to the template's organization",
        ), None

    cadence = cadence_for_template(template)
    today = as_utc(now).date()
    horizon = today + timedelta(days=template.lead_days or 0)
    due = next_due_date(template, cadence, department.id, today, horizon)
    if due > horizon:
        return PairOutcome(template.id, department.id, Outcome.SKIPPED, due_date=due), None

    inspector = resolve_inspector(template, target)
    if inspector is None:
        logger.warning(
            "No eligible inspector for template %s department %s (due %s); not created",
            template.id, department.id, due,
        )
        return PairOutcome(template.id, department.id, Outcome.UNASSIGNED, due_date=due,
                           message="No eligible inspector"), None

    instance = InspectionInstance(
        template_id=template.id,
        department_id=department.id,
        inspector_id=inspector.id,
        due_date=start_of_day(due),
        status=InspectionStatus.PENDING,
        period_key=due.isoformat(),
        created_at=as_utc(now),
    )
    db.session.add(instance)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if not _is_unique_violation(exc):
            raise
        logger.info(
            "Occurrence already exists for template %s department %s period %s",
            template.id, department.id, due,
        )
        return PairOutcome(template.id, department.id, Outcome.ALREADY_EXISTS, due_date=due), None

    outcome = PairOutcome(
        instance.template_id, instance.department_id, Outcome.CREATED,
        due_date=due, instance_id=instance.id,
        derived_status=derive_status(instance.due_date, None, buffer_days, now=now),
    )
    record_audit(None, "SCHEDULED_CREATE_INSPECTION", "InspectionInstance", instance.id,
                 organization_id=template.organization_id,
                 diff={"period_key": instance.period_key, "inspector_id": inspector.id})
    return outcome, instance


def _work_list(template_ids: list[int] | None) -> list[tuple[int, int, int]]:
    """(template_id, department_id, target_id) for every active recurring template target."""
    stmt = (
        select(MasterTemplate.id, TemplateDepartment.department_id, TemplateDepartment.id)
        .join(TemplateDepartment, TemplateDepartment.template_id == MasterTemplate.id)
        .where(MasterTemplate.is_active.is_(True))
        .where(
            (MasterTemplate.cadence_type.is_not(None) & (MasterTemplate.cadence_type != ""))
            | (MasterTemplate.frequency > 0)
        )
        .order_by(MasterTemplate.id, TemplateDepartment.department_id)
    )
    if template_ids:
        stmt = stmt.where(MasterTemplate.id.in_(template_ids))
    return [tuple(row) for row in db.session.execute(stmt).all()]


def run_scheduled_sweep(
    now: datetime,
    *,
    buffer_days: int | None = None,
    deadline_seconds: float | None = None,
    template_ids: list[int] | None = None,
) -> SweepResult:
    """Create every currently-missing recurring instance.

    Safe to repeat and to run concurrently with itself: a second run for the
    same ``now`` finds nothing missing, and races are settled by the store's
    unique key. Per-pair failures are collected in the result; the sweep
    itself only raises for errors outside pair processing.
    """
    now = as_utc(now)
    started = time.monotonic()
    result = SweepResult(run_at=now)

    work = _work_list(template_ids)
    for template_id, department_id, target_id in work:
        if deadline_seconds is not None and time.monotonic() - started >= deadline_seconds:
            result.outcomes.append(PairOutcome(template_id, department_id, Outcome.DEFERRED))
            continue
        try:
            outcome, instance = _sweep_pair(target_id, now, buffer_days)
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Sweep failed for template %s department %s", template_id, department_id,
            )
            outcome, instance = PairOutcome(
                template_id, department_id, Outcome.FAILED, message=str(exc),
            ), None
        result.outcomes.append(outcome)
        if instance is not None:
            result.created.append(instance)

    counts = result.counts
    if result.deferred:
        logger.warning("Sweep deadline reached; %d pair(s) deferred", len(result.deferred))
    logger.info(
        "Inspection sweep: pairs=%d created=%d skipped=%d already_exists=%d "
        "unassigned=%d failed=%d deferred=%d",
        len(work), counts[Outcome.CREATED], counts[Outcome.SKIPPED],
        counts[Outcome.ALREADY_EXISTS], counts[Outcome.UNASSIGNED],
        counts[Outcome.FAILED], counts[Outcome.DEFERRED],
    )
    return result
