"""
Recurrence cadence policies.

A template stores ``cadence_type`` + ``cadence_config``; ``cadence_for_template``
turns that pair into a ``Cadence`` through a registry, so new calendar rules
can be added without touching the scheduler:

    @register_cadence("quarterly")
    def _build_quarterly(config: dict) -> Cadence:
        ...

Built-ins:
    interval     {"days": 7}                 fixed day interval
    monthly      {"day": 15}                 same day every month (clamped)
    nth_weekday  {"n": 1, "weekday": 0}      e.g. first Monday of each month
                                             (n=-1 → last; weekday 0=Monday)
"""

from __future__ import annotations

import calendar
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date, timedelta

from inspection_platform.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Used for on-demand creation when a template has no cadence at all.
FALLBACK_INTERVAL_DAYS = 7


class Cadence(ABC):
    """Calendar rule producing successive due dates."""

    name: str = ""

    @abstractmethod
    def first_on_or_after(self, anchor: date) -> date:
        """Earliest occurrence on or after *anchor*."""

    def next_after(self, previous: date) -> date:
        """Occurrence strictly after *previous*."""
        return self.first_on_or_after(previous + timedelta(days=1))


class IntervalCadence(Cadence):
    name = "interval"

    def __init__(self, days: int):
        if days <= 0:
            raise ValidationError("Interval cadence needs days > 0", details={"days": days})
        self.days = days

    def first_on_or_after(self, anchor: date) -> date:
        return anchor

    def next_after(self, previous: date) -> date:
        return previous + timedelta(days=self.days)


def _add_months(year: int, month: int, count: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


class _MonthlyRule(Cadence):
    """Shared month-walking for rules that pick one day per month."""

    @abstractmethod
    def _day_in_month(self, year: int, month: int) -> date:
        """The rule's single occurrence in the given month."""

    def first_on_or_after(self, anchor: date) -> date:
        candidate = self._day_in_month(anchor.year, anchor.month)
        if candidate >= anchor:
            return candidate
        year, month = _add_months(anchor.year, anchor.month, 1)
        return self._day_in_month(year, month)


class MonthlyCadence(_MonthlyRule):
    name = "monthly"

    def __init__(self, day: int):
        if not 1 <= day <= 31:
            raise ValidationError("Monthly cadence day must be 1-31", details={"day": day})
        self.day = day

    def _day_in_month(self, year: int, month: int) -> date:
        last = calendar.monthrange(year, month)[1]
        return date(year, month, min(self.day, last))


class NthWeekdayCadence(_MonthlyRule):
    name = "nth_weekday"

    def __init__(self, n: int, weekday: int):
        if n not in (1, 2, 3, 4, -1):
            raise ValidationError("nth_weekday n must be 1-4 or -1", details={"n": n})
        if not 0 <= weekday <= 6:
            raise ValidationError("weekday must be 0 (Monday) to 6 (Sunday)",
                                  details={"weekday": weekday})
        self.n = n
        self.weekday = weekday

    def _day_in_month(self, year: int, month: int) -> date:
        last = calendar.monthrange(year, month)[1]
        if self.n == -1:
            end = date(year, month, last)
            return end - timedelta(days=(end.weekday() - self.weekday) % 7)
        first = date(year, month, 1)
        offset = (self.weekday - first.weekday()) % 7
        return first + timedelta(days=offset + 7 * (self.n - 1))


# ── Registry ─────────────────────────────────────────────────────────────────

_CADENCE_BUILDERS: dict[str, Callable[[dict], Cadence]] = {}


def register_cadence(name: str):
    """Decorator registering a builder ``(config: dict) -> Cadence``."""
    def decorator(fn):
        _CADENCE_BUILDERS[name] = fn
        return fn
    return decorator


def get_registered_cadences() -> list[str]:
    return sorted(_CADENCE_BUILDERS)


def _int_option(config: dict, key: str, default=None) -> int:
    value = config.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Cadence option '{key}' must be an integer",
                              details={key: value}) from exc


@register_cadence("interval")
def _build_interval(config: dict) -> Cadence:
    return IntervalCadence(_int_option(config, "days"))


@register_cadence("monthly")
def _build_monthly(config: dict) -> Cadence:
    return MonthlyCadence(_int_option(config, "day", 1))


@register_cadence("nth_weekday")
def _build_nth_weekday(config: dict) -> Cadence:
    return NthWeekdayCadence(_int_option(config, "n", 1), _int_option(config, "weekday", 0))


def build_cadence(cadence_type: str, config: dict | None = None) -> Cadence:
    builder = _CADENCE_BUILDERS.get(cadence_type)
    if builder is None:
        raise ValidationError(f"Unknown cadence type: {cadence_type}",
                              details={"cadence_type": cadence_type})
    return builder(config or {})


def cadence_for_template(template) -> Cadence | None:
    """Resolve a template's recurrence policy, or None when it has none.

    Templates from before cadence types existed only carry ``frequency``
    (days); those resolve to an interval cadence.
    """
    if template.cadence_type:
        return build_cadence(template.cadence_type, template.cadence_config)
    if template.frequency and template.frequency > 0:
        return IntervalCadence(template.frequency)
    return None
