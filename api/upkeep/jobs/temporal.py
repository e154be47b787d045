from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any


def to_datetime(value: Any) -> datetime | None:
    """Normalize a stored timestamp; anything unrecognized yields ``None``."""
    if value is None:
        return None

    converter = getattr(value, "to_datetime", None)
    if callable(converter):
        try:
            value = converter()
        except (TypeError, ValueError, OverflowError):
            return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def calendar_day(value: Any, tz: tzinfo = timezone.utc) -> date | None:
    dt = to_datetime(value)
    if dt is None:
        return None
    return dt.astimezone(tz).date()


def has_passed(value: Any, reference: datetime, tz: tzinfo = timezone.utc) -> bool:
    day = calendar_day(value, tz)
    reference_day = calendar_day(reference, tz)
    if day is None or reference_day is None:
        return False
    return reference_day >= day


def is_within_days(value: Any, reference: datetime, days: int, tz: tzinfo = timezone.utc) -> bool:
    day = calendar_day(value, tz)
    reference_dt = to_datetime(reference)
    if day is None or reference_dt is None:
        return False
    return day <= (reference_dt + timedelta(days=days)).astimezone(tz).date()


def has_duration_elapsed(start: Any, duration_days: Any, now: datetime) -> bool:
    # Full-instant comparison, unlike the calendar-day predicates above.
    started_at = to_datetime(start)
    current = to_datetime(now)
    days = _as_days(duration_days)
    if started_at is None or current is None or days is None:
        return False
    return current >= started_at + timedelta(days=days)


def _as_days(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None
