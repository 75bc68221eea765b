"""Clock and date helpers shared by the store and the scheduler."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` converted to UTC, treating naive datetimes as UTC.

    Args:
        value: Datetime to normalize.

    Returns:
        datetime: Timezone-aware datetime in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: datetime | date | str | None) -> datetime | None:
    """Parse an ISO-8601 value into a UTC datetime.

    Args:
        value: Datetime, date, ISO string, or None.

    Returns:
        datetime | None: Parsed UTC datetime, or None when the value is empty,
            cannot be parsed, or falls outside the representable UTC range.
    """
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        if isinstance(value, datetime):
            return ensure_utc(value)
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    except (ValueError, OverflowError):
        # Offsets that push a value past year 1 or 9999 overflow on conversion.
        return None


def resolve_datetime(value: datetime | date | str | None, clock: Clock = utcnow) -> datetime:
    """Parse ``value`` or fall back to ``clock()`` when it is missing or invalid.

    Args:
        value: Candidate timestamp supplied by a caller.
        clock: Clock used for the fallback.

    Returns:
        datetime: Usable UTC datetime.
    """
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed
    if value not in (None, ""):
        LOGGER.warning("Invalid date %r; using the current time instead.", value)
    return ensure_utc(clock())


def calendar_days_between(start: datetime, end: datetime) -> int:
    """Return the number of calendar days from ``start`` to ``end`` in UTC.

    Time of day is discarded, so 23:59 and 00:01 on the next day are one day apart.
    """
    return (ensure_utc(end).date() - ensure_utc(start).date()).days


__all__ = [
    "Clock",
    "utcnow",
    "ensure_utc",
    "parse_datetime",
    "resolve_datetime",
    "calendar_days_between",
]
