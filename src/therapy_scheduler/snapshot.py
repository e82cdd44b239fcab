"""In-memory view of the records one engine call works on."""

import copy
import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from .availability import resolve_day
from .models import (
    AvailabilityException,
    AvailabilityWindow,
    Equipment,
    ResolvedWindow,
    Room,
    ScheduledSession,
    Therapist,
)
from .store import RecordStore
from .utils import daterange

logger = logging.getLogger(__name__)


class ScheduleSnapshot:
    """Sessions, availability and reference records read once from the store.

    Engine calls are stateless over an explicit snapshot: the detector,
    generator and optimizer read only from here, and the generator adds
    its tentative sessions here rather than to the store. Resolved
    windows are cached per ``(therapist_id, date)``.
    """

    def __init__(
        self,
        sessions: Iterable[ScheduledSession] = (),
        windows: Iterable[AvailabilityWindow] = (),
        exceptions: Iterable[AvailabilityException] = (),
        therapists: Iterable[Therapist] = (),
        rooms: Iterable[Room] = (),
        equipment: Iterable[Equipment] = (),
    ):
        self._sessions: dict[str, ScheduledSession] = {}
        self._by_date: dict[date, set[str]] = defaultdict(set)
        self._windows: dict[str, list[AvailabilityWindow]] = defaultdict(list)
        self._exceptions: dict[str, list[AvailabilityException]] = defaultdict(list)
        self._resolved: dict[tuple[str, date], list[ResolvedWindow]] = {}

        self.therapists: dict[str, Therapist] = {t.id: t for t in therapists}
        self.rooms: dict[str, Room] = {r.id: r for r in rooms}
        self.equipment: dict[str, Equipment] = {e.id: e for e in equipment}

        for window in windows:
            self._windows[window.therapist_id].append(window)
        for exception in exceptions:
            self._exceptions[exception.therapist_id].append(exception)
        for session in sessions:
            self.add_session(session)

    @classmethod
    def from_store(
        cls,
        store: RecordStore,
        start: date,
        end: date,
        therapist_ids: Iterable[str] | None = None,
    ) -> "ScheduleSnapshot":
        """Read everything relevant to ``[start, end]`` from a record store.

        Sessions of every therapist are loaded because room, equipment and
        student collisions cross therapists; availability is limited to
        ``therapist_ids`` when given.
        """
        wanted = set(therapist_ids) if therapist_ids is not None else None
        windows = store.query("window", lambda w: wanted is None or w.therapist_id in wanted)
        exceptions = store.query(
            "exception",
            lambda e: (wanted is None or e.therapist_id in wanted) and e.start_date <= end and e.end_date >= start,
        )
        snapshot = cls(
            sessions=store.sessions_between(start, end),
            windows=windows,
            exceptions=exceptions,
            therapists=store.query("therapist"),
            rooms=store.query("room"),
            equipment=store.query("equipment"),
        )
        logger.debug(
            f"Snapshot {start}..{end}: {len(snapshot._sessions)} sessions, "
            f"{len(windows)} windows, {len(exceptions)} exceptions"
        )
        return snapshot

    def copy(self) -> "ScheduleSnapshot":
        """Independent copy for tentative changes; reference records are shared."""
        clone = ScheduleSnapshot.__new__(ScheduleSnapshot)
        clone._sessions = {sid: copy.deepcopy(s) for sid, s in self._sessions.items()}
        clone._by_date = defaultdict(set, {d: set(ids) for d, ids in self._by_date.items()})
        clone._windows = self._windows
        clone._exceptions = self._exceptions
        clone._resolved = dict(self._resolved)
        clone.therapists = self.therapists
        clone.rooms = self.rooms
        clone.equipment = self.equipment
        return clone

    # Sessions

    def add_session(self, session: ScheduledSession) -> None:
        if session.id in self._sessions:
            self.remove_session(session.id)
        self._sessions[session.id] = session
        self._by_date[session.session_date].add(session.id)

    def replace_session(self, session: ScheduledSession) -> None:
        self.add_session(session)

    def remove_session(self, session_id: str) -> ScheduledSession | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            self._by_date[session.session_date].discard(session_id)
        return session

    def get_session(self, session_id: str) -> ScheduledSession | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[ScheduledSession]:
        """All sessions ordered by date, start time and id."""
        return sorted(
            self._sessions.values(),
            key=lambda s: (s.session_date, s.start_time, s.id),
        )

    def sessions_on(self, day: date, therapist_id: str | None = None, active_only: bool = True) -> list[ScheduledSession]:
        sessions = [self._sessions[sid] for sid in self._by_date.get(day, ())]
        if therapist_id is not None:
            sessions = [s for s in sessions if s.therapist_id == therapist_id]
        if active_only:
            sessions = [s for s in sessions if s.status.is_active]
        return sorted(sessions, key=lambda s: (s.start_time, s.id))

    # Availability

    @property
    def therapist_ids(self) -> list[str]:
        """Active registered therapists, else every therapist owning a window."""
        active = [tid for tid, t in self.therapists.items() if t.is_active]
        if active:
            return sorted(active)
        return sorted(tid for tid, windows in self._windows.items() if windows)

    def has_therapist(self, therapist_id: str) -> bool:
        return therapist_id in self.therapists or bool(self._windows.get(therapist_id))

    def windows_for(self, therapist_id: str) -> list[AvailabilityWindow]:
        return list(self._windows.get(therapist_id, []))

    def resolved(self, therapist_id: str, day: date) -> list[ResolvedWindow]:
        """Resolved availability (bookable and masking entries) for one date."""
        key = (therapist_id, day)
        if key not in self._resolved:
            self._resolved[key] = resolve_day(
                self._windows.get(therapist_id, []),
                self._exceptions.get(therapist_id, []),
                therapist_id,
                day,
            )
        return self._resolved[key]

    def bookable(self, therapist_id: str, day: date) -> list[ResolvedWindow]:
        return [w for w in self.resolved(therapist_id, day) if w.bookable]

    def slot_starts(self, therapist_id: str, day: date, duration: int, step: int) -> list[int]:
        """Start minutes of every ``duration``-long slot inside a bookable window.

        Starts are laid on a ``step`` grid anchored at each window's start.
        """
        starts: set[int] = set()
        for window in self.bookable(therapist_id, day):
            start = window.start_minutes
            while start + duration <= window.end_minutes:
                starts.add(start)
                start += step
        return sorted(starts)

    def available_minutes(self, therapist_id: str, start: date, end: date) -> int:
        """Total bookable minutes of a therapist over ``[start, end]``."""
        return sum(
            w.duration_minutes
            for day in daterange(start, end)
            for w in self.bookable(therapist_id, day)
        )

    def window_occupancy(
        self,
        window: ResolvedWindow,
        exclude_session_id: str | None = None,
    ) -> int:
        """Bookings held by one window occurrence.

        Sessions are counted when they lie inside any resolved piece of the
        same window on that date. Date-specific windows also carry a stored
        counter; the larger of the two wins so the count never under-reports.
        """
        pieces = [
            w for w in self.bookable(window.therapist_id, window.day) if w.window_id == window.window_id
        ]
        derived = 0
        excluded_inside = False
        for session in self.sessions_on(window.day, window.therapist_id):
            inside = any(p.covers(session.start_minutes, session.end_minutes) for p in pieces)
            if not inside:
                continue
            if session.id == exclude_session_id:
                excluded_inside = True
                continue
            derived += 1
        stored = window.booked - 1 if excluded_inside else window.booked
        return max(stored, derived)

    def daily_limit(self, therapist_id: str, default: int) -> int:
        therapist = self.therapists.get(therapist_id)
        if therapist is not None and therapist.max_sessions_per_day:
            return therapist.max_sessions_per_day
        return default
