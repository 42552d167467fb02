"""
Inspection lifecycle status derivation.

Pure functions: the caller supplies ``now``; nothing here reads a clock,
touches the database or logs.

    derive_status(due, None, 3, now=now)      -> "due-soon"
    describe_status(due, None, now=now)       -> StatusInfo(status="due-soon", days_until_due=2, …)
    sorted(rows, key=lambda r: status_sort_key(r.status, r.due_date))
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from inspection_platform.utils.helpers import as_utc

DEFAULT_BUFFER_DAYS = 3

_SECONDS_PER_DAY = 86_400


class DerivedStatus:
    COMPLETED = "completed"
    DUE_SOON = "due-soon"
    OVERDUE = "overdue"
    PENDING = "pending"


DERIVED_STATUSES = (
    DerivedStatus.OVERDUE,
    DerivedStatus.DUE_SOON,
    DerivedStatus.PENDING,
    DerivedStatus.COMPLETED,
)

# Administrator-relevant first.
STATUS_PRIORITY = {status: rank for rank, status in enumerate(DERIVED_STATUSES)}

_LABELS = {
    DerivedStatus.COMPLETED: "Completed",
    DerivedStatus.DUE_SOON: "Due Soon",
    DerivedStatus.OVERDUE: "Overdue",
    DerivedStatus.PENDING: "Pending",
}


@dataclass(frozen=True)
class StatusInfo:
    status: str
    label: str
    days_until_due: int | None = None
    days_overdue: int | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "label": self.label,
            "days_until_due": self.days_until_due,
            "days_overdue": self.days_overdue,
        }


def days_until_due(due_date: datetime, *, now: datetime) -> int:
    """Whole days from *now* to *due_date*, rounded up (negative when past)."""
    delta = as_utc(due_date) - as_utc(now)
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def _resolve_buffer(buffer_days: int | None) -> int:
    if buffer_days is None:
        return DEFAULT_BUFFER_DAYS
    if buffer_days < 0:
        raise ValueError("buffer_days must be >= 0")
    return int(buffer_days)


def describe_status(
    due_date: datetime,
    completed_at: datetime | None = None,
    buffer_days: int | None = DEFAULT_BUFFER_DAYS,
    *,
    now: datetime,
) -> StatusInfo:
    """Derive the lifecycle state plus the day counts the UI shows with it.

    Completion wins over lateness: a late-completed inspection reads as
    ``completed``, never ``overdue``.
    """
    if completed_at is not None:
        return StatusInfo(DerivedStatus.COMPLETED, _LABELS[DerivedStatus.COMPLETED])

    buffer_days = _resolve_buffer(buffer_days)
    days = days_until_due(due_date, now=now)

    if days < 0:
        return StatusInfo(DerivedStatus.OVERDUE, _LABELS[DerivedStatus.OVERDUE],
                          days_overdue=abs(days))
    if days <= buffer_days:
        return StatusInfo(DerivedStatus.DUE_SOON, _LABELS[DerivedStatus.DUE_SOON],
                          days_until_due=days)
    return StatusInfo(DerivedStatus.PENDING, _LABELS[DerivedStatus.PENDING],
                      days_until_due=days)


def derive_status(
    due_date: datetime,
    completed_at: datetime | None = None,
    buffer_days: int | None = DEFAULT_BUFFER_DAYS,
    *,
    now: datetime,
) -> str:
    """Map (due date, completion, buffer window, now) to a derived status string."""
    return describe_status(due_date, completed_at, buffer_days, now=now).status


def status_sort_key(status: str, due_date: datetime, tiebreak: int = 0) -> tuple:
    """Sort key: status priority, then due date ascending, then *tiebreak* (usually the id)."""
    return (STATUS_PRIORITY.get(status, len(STATUS_PRIORITY)), as_utc(due_date), tiebreak)
