"""Therapist availability: storage rules and per-date window resolution."""

import logging
from collections.abc import Iterable
from datetime import date

from .exceptions import CapacityViolationError, InvalidInputError, InvalidWindowError
from .models import (
    AvailabilityException,
    AvailabilityWindow,
    ResolvedWindow,
    ScheduledSession,
)
from .store import RecordStore
from .utils import daterange, format_time

logger = logging.getLogger(__name__)


def _subtract(pieces: list[tuple[int, int]], cut_start: int, cut_end: int) -> list[tuple[int, int]]:
    """Remove ``[cut_start, cut_end)`` from a list of minute ranges."""
    result = []
    for start, end in pieces:
        if cut_end <= start or cut_start >= end:
            result.append((start, end))
            continue
        if start < cut_start:
            result.append((start, cut_start))
        if cut_end < end:
            result.append((cut_end, end))
    return result


def _intersect(pieces: list[tuple[int, int]], keep: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Intersect minute ranges with a list of allowed ranges."""
    result = []
    for start, end in pieces:
        for keep_start, keep_end in keep:
            lo, hi = max(start, keep_start), min(end, keep_end)
            if lo < hi:
                result.append((lo, hi))
    return sorted(result)


def resolve_day(
    windows: Iterable[AvailabilityWindow],
    exceptions: Iterable[AvailabilityException],
    therapist_id: str,
    day: date,
) -> list[ResolvedWindow]:
    """Resolve a therapist's availability for one calendar date.

    Three layers, evaluated in order:
    1. Base: recurring windows for the weekday.
    2. Override: if any date-specific (non time-off) window exists for the
       date, it replaces the whole recurring layer.
    3. Mask: time-off windows, unavailable windows and exceptions cut the
       bookable windows; selective exceptions clip them to their
       alternative times.

    Masking entries are returned too (``bookable`` is False) so callers can
    tell "time off" apart from "no window". Output is sorted and fully
    determined by the inputs.
    """
    day_windows = [w for w in windows if w.therapist_id == therapist_id and w.applies_to(day)]
    time_off = [w for w in day_windows if w.is_time_off]
    regular = [w for w in day_windows if not w.is_time_off]

    specific = [w for w in regular if w.specific_date is not None]
    layer = specific if specific else [w for w in regular if w.specific_date is None]

    masks: list[ResolvedWindow] = []
    for w in time_off:
        masks.append(
            ResolvedWindow(
                therapist_id=therapist_id,
                day=day,
                start_minutes=w.start_minutes,
                end_minutes=w.end_minutes,
                window_id=w.id,
                capacity=0,
                is_time_off=True,
                source="time_off",
                reason=w.time_off_reason or "",
            )
        )
    for w in layer:
        if not w.is_available:
            masks.append(
                ResolvedWindow(
                    therapist_id=therapist_id,
                    day=day,
                    start_minutes=w.start_minutes,
                    end_minutes=w.end_minutes,
                    window_id=w.id,
                    capacity=0,
                    is_available=False,
                    source="unavailable",
                    reason=w.notes,
                )
            )

    day_exceptions = [e for e in exceptions if e.therapist_id == therapist_id and e.applies_on(day)]
    selective: list[tuple[int, int]] = []
    for exc in day_exceptions:
        if exc.is_available:
            selective.extend((t.start_minutes, t.end_minutes) for t in exc.alternative_times)
            continue
        start, end = exc.masked_range()
        masks.append(
            ResolvedWindow(
                therapist_id=therapist_id,
                day=day,
                start_minutes=start,
                end_minutes=end,
                window_id=exc.id,
                capacity=0,
                is_time_off=True,
                source="exception",
                reason=exc.reason.en,
            )
        )

    resolved: list[ResolvedWindow] = []
    for w in layer:
        if not w.is_available:
            continue
        pieces = [(w.start_minutes, w.end_minutes)]
        for mask in masks:
            pieces = _subtract(pieces, mask.start_minutes, mask.end_minutes)
        if selective:
            pieces = _intersect(pieces, selective)
        booked = w.current_bookings if w.specific_date is not None else 0
        for start, end in pieces:
            resolved.append(
                ResolvedWindow(
                    therapist_id=therapist_id,
                    day=day,
                    start_minutes=start,
                    end_minutes=end,
                    window_id=w.id,
                    capacity=w.max_sessions_per_slot,
                    booked=booked,
                    source="date_specific" if w.specific_date is not None else "recurring",
                )
            )

    resolved.extend(masks)
    resolved.sort(key=lambda r: (r.start_minutes, r.end_minutes, r.source, r.window_id or ""))
    return resolved


def resolve_windows(
    windows: Iterable[AvailabilityWindow],
    exceptions: Iterable[AvailabilityException],
    therapist_id: str,
    start: date,
    end: date,
) -> dict[date, list[ResolvedWindow]]:
    """Resolve availability for every date in ``[start, end]`` (see ``resolve_day``)."""
    windows = list(windows)
    exceptions = list(exceptions)
    return {day: resolve_day(windows, exceptions, therapist_id, day) for day in daterange(start, end)}


class AvailabilityStore:
    """Validating front for availability records kept in the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _validate(self, window: AvailabilityWindow) -> None:
        if window.start_time >= window.end_time:
            raise InvalidWindowError(
                window.id,
                f"starts at {format_time(window.start_time)} but ends at {format_time(window.end_time)}",
            )
        if window.max_sessions_per_slot < 1:
            raise InvalidWindowError(window.id, "must allow at least one session per slot")
        if window.specific_date is None:
            if window.day_of_week is None or not 0 <= window.day_of_week <= 6:
                raise InvalidWindowError(window.id, "needs a day_of_week (0-6) or a specific_date")

    def get(self, window_id: str) -> AvailabilityWindow:
        return self.store.require("window", window_id)

    def upsert(self, window: AvailabilityWindow, expected_version: int | None = None) -> AvailabilityWindow:
        """Create or update a window.

        Bookings are owned by the engine, so an update keeps the stored
        ``current_bookings`` and may not lower capacity beneath it.

        Raises:
            InvalidWindowError: start >= end, capacity < 1 or no applicability
            CapacityViolationError: capacity below existing bookings
        """
        self._validate(window)
        existing = self.store.get("window", window.id)
        if existing is not None:
            window.current_bookings = existing.current_bookings
        if window.current_bookings < 0 or window.max_sessions_per_slot < window.current_bookings:
            raise CapacityViolationError(window.id, window.max_sessions_per_slot, window.current_bookings)
        if window.specific_date is not None:
            window.is_recurring = False
        return self.store.upsert("window", window, expected_version=expected_version)

    def delete(self, window_id: str, force: bool = False) -> None:
        """Delete a window; refused while it holds bookings unless ``force``."""
        window = self.get(window_id)
        if window.current_bookings > 0 and not force:
            raise CapacityViolationError(window_id, 0, window.current_bookings)
        if window.current_bookings > 0:
            logger.warning(f"Force-removing window {window_id} with {window.current_bookings} booking(s)")
        self.store.delete("window", window_id)

    def add_exception(self, exception: AvailabilityException) -> AvailabilityException:
        if exception.start_date > exception.end_date:
            raise InvalidInputError("start_date is after end_date", field="availability exception")
        if (exception.start_time is None) != (exception.end_time is None):
            raise InvalidInputError("give both start_time and end_time or neither", field="availability exception")
        if exception.start_time is not None and exception.start_time >= exception.end_time:
            raise InvalidInputError("start_time must be before end_time", field="availability exception")
        return self.store.upsert("exception", exception)

    def remove_exception(self, exception_id: str) -> None:
        self.store.delete("exception", exception_id)

    def exceptions_for(self, therapist_id: str, start: date, end: date) -> list[AvailabilityException]:
        return self.store.exceptions_for(therapist_id, start, end)

    def query(self, therapist_id: str, start: date, end: date) -> dict[date, list[ResolvedWindow]]:
        """Resolved windows for each date in range. Reads only."""
        return resolve_windows(
            self.store.windows_for(therapist_id),
            self.store.exceptions_for(therapist_id, start, end),
            therapist_id,
            start,
            end,
        )

    def _booking_window(self, session: ScheduledSession) -> AvailabilityWindow | None:
        """Date-specific window holding the session, if any."""
        for window in self.store.windows_for(session.therapist_id):
            if (
                window.specific_date == session.session_date
                and not window.is_time_off
                and window.start_minutes <= session.start_minutes
                and session.end_minutes <= window.end_minutes
            ):
                return window
        return None

    def reserve(self, session: ScheduledSession) -> str | None:
        """Count a committed session against its date-specific window.

        Recurring windows carry no per-date counter; their occupancy is
        derived from sessions at detection time.
        """
        window = self._booking_window(session)
        if window is None:
            return None
        if window.current_bookings + 1 > window.max_sessions_per_slot:
            raise CapacityViolationError(window.id, window.max_sessions_per_slot, window.current_bookings + 1)
        window.current_bookings += 1
        self.store.upsert("window", window, expected_version=window.version)
        return window.id

    def release(self, session: ScheduledSession) -> str | None:
        """Give back a booking when a session is cancelled or moved away."""
        window = self._booking_window(session)
        if window is None or window.current_bookings == 0:
            return None
        window.current_bookings -= 1
        self.store.upsert("window", window, expected_version=window.version)
        return window.id
