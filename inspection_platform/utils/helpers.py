"""Shared utility functions.

parse_date:        returns None on bad input
parse_due_date:    raises ValueError on bad input, for request payloads
as_utc / utcnow:   timezone normalisation for DB round-trips
"""
import logging
from datetime import date, datetime, time, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime (the platform's default clock)."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so naive
    values read back from the store are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: date) -> datetime:
    """Midnight UTC on *value*."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_due_date(value):
    """Parse a due date from request input, raising ValueError on bad input.

    Accepts a full ISO datetime (kept as-is, normalised to UTC) or a bare
    date (midnight UTC). Empty input returns None so callers can fall back
    to the template's cadence.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return start_of_day(value)
    text = str(value).strip()
    if "T" in text or " " in text:
        try:
            return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError as exc:
            raise ValueError("Invalid due_date. Use ISO 8601.") from exc
    parsed = parse_date(text)
    if parsed is None:
        raise ValueError("Invalid due_date. Use YYYY-MM-DD or DD.MM.YYYY.")
    return start_of_day(parsed)
