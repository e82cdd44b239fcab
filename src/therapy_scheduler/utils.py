"""Utility functions for dates, times and identifiers."""

import uuid
from collections.abc import Iterable, Iterator, Sequence
from datetime import date, time, timedelta
from typing import TypeVar

T = TypeVar("T")

# Namespace for deterministic identifiers (session ids, conflict ids)
ID_NAMESPACE = uuid.UUID("6f1c1b9e-2f55-4a2e-9d9b-0c7f6f3f8a11")

MINUTES_PER_DAY = 24 * 60

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def parse_time(value: str | time) -> time:
    """Parse an ``HH:MM`` (or ``HH:MM:SS``) string into a time.

    Args:
        value: Time string or an existing time

    Returns:
        time truncated to minute resolution

    Raises:
        ValueError: If the string is not a valid time
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(int(parts[0]), int(parts[1]))


def format_time(value: time) -> str:
    """Format a time as ``HH:MM``."""
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_date(value: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` string into a date."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip())


def time_to_minutes(value: time) -> int:
    """Convert a time to minutes since midnight."""
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    """Convert minutes since midnight to a time (must be within the same day)."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"Minutes {minutes} fall outside a single day")
    return time(minutes // 60, minutes % 60)


def overlaps(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Check whether two half-open minute ranges ``[start, end)`` overlap."""
    return start1 < end2 and end1 > start2


def daterange(start: date, end: date) -> Iterator[date]:
    """Iterate dates from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def week_chunks(start: date, end: date) -> list[list[date]]:
    """Split an inclusive date range into weeks anchored at the start date.

    Example:
        2025-01-01 (Wed) .. 2025-01-10 gives
        [[Jan 1..Jan 7], [Jan 8..Jan 10]]
    """
    weeks: list[list[date]] = []
    for day in daterange(start, end):
        if (day - start).days % 7 == 0:
            weeks.append([])
        weeks[-1].append(day)
    return weeks


def week_bounds(day: date) -> tuple[date, date]:
    """Return the Monday..Sunday calendar week containing a date."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def deterministic_id(*parts: object) -> str:
    """Build a stable identifier from its parts.

    Identical parts always produce the same id, which keeps generation
    results replayable.
    """
    key = "|".join(str(p) for p in parts)
    return str(uuid.uuid5(ID_NAMESPACE, key))


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive chunks of at most ``size`` items."""
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def day_name(day_of_week: int) -> str:
    """Get the lowercase English name for a 0-based weekday (Monday = 0)."""
    return DAY_NAMES[day_of_week]


def day_name_to_index(name: str) -> int | None:
    """Convert a day name (``monday``, ``Mon``) to its 0-based weekday."""
    normalized = name.strip().lower()
    for index, full in enumerate(DAY_NAMES):
        if normalized == full or normalized == full[:3]:
            return index
    return None


def unique(items: Iterable[T]) -> list[T]:
    """De-duplicate while preserving first-seen order."""
    seen: set = set()
    result: list[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
