"""Conflict detection for candidate and existing sessions."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta

from .config import SchedulingPolicy, SeverityConfig
from .constants import MAX_ALTERNATIVE_SLOTS, MESSAGES
from .models import (
    BilingualText,
    ConflictSeverity,
    ConflictType,
    ResourceAvailability,
    ScheduleConflict,
    ScheduledSession,
    SchedulingSuggestion,
    SessionCandidate,
    SessionStatus,
)
from .snapshot import ScheduleSnapshot
from .store import RecordStore
from .utils import deterministic_id, format_time, minutes_to_time, overlaps

logger = logging.getLogger(__name__)

# Statuses whose overlap makes a double booking critical rather than high
COMMITTED_STATUSES = (
    SessionStatus.CONFIRMED,
    SessionStatus.IN_PROGRESS,
    SessionStatus.COMPLETED,
)

_TYPE_ORDER = {conflict_type: index for index, conflict_type in enumerate(ConflictType)}


def message(key: str, **values: object) -> BilingualText:
    """Format a bilingual message template from ``MESSAGES``."""
    en, ar = MESSAGES[key]
    return BilingualText(en=en.format(**values), ar=ar.format(**values))


def sort_conflicts(conflicts: list[ScheduleConflict]) -> list[ScheduleConflict]:
    """Order by severity (critical first), then conflict type, then id."""
    return sorted(
        conflicts,
        key=lambda c: (-c.severity.rank, _TYPE_ORDER[c.conflict_type], c.rule, c.id),
    )


def worst_severity(conflicts: list[ScheduleConflict]) -> ConflictSeverity | None:
    if not conflicts:
        return None
    return max((c.severity for c in conflicts), key=lambda s: s.rank)


class ConflictDetector:
    """Checks a placement against existing commitments.

    The detector never mutates anything: it reads a ``ScheduleSnapshot`` and
    returns conflicts. Conflict ids are derived from the rule, the
    candidate and the colliding record, so identical inputs always yield
    identical output.
    """

    def __init__(
        self,
        severity: SeverityConfig | None = None,
        policy: SchedulingPolicy | None = None,
        store: RecordStore | None = None,
    ):
        self.severity = severity or SeverityConfig()
        self.policy = policy or SchedulingPolicy()
        self.store = store

    def _snapshot_for(self, candidate: SessionCandidate, snapshot: ScheduleSnapshot | None) -> ScheduleSnapshot:
        if snapshot is not None:
            return snapshot
        if self.store is None:
            raise ValueError("ConflictDetector needs a snapshot or a record store")
        return ScheduleSnapshot.from_store(
            self.store,
            candidate.session_date,
            candidate.session_date,
            therapist_ids=[candidate.therapist_id],
        )

    def check(
        self,
        candidate: SessionCandidate,
        snapshot: ScheduleSnapshot | None = None,
    ) -> list[ScheduleConflict]:
        """Detect every conflict a candidate placement would cause.

        Args:
            candidate: Proposed therapist, date and time (plus optional room,
                       equipment and student)
            snapshot: Records to check against; read from the store when omitted

        Returns:
            Conflicts sorted by severity (critical first), then type
        """
        snapshot = self._snapshot_for(candidate, snapshot)
        conflicts: list[ScheduleConflict] = []
        conflicts.extend(self._check_availability(candidate, snapshot))
        conflicts.extend(self._check_sessions(candidate, snapshot))
        conflicts.extend(self._check_daily_load(candidate, snapshot))
        return sort_conflicts(conflicts)

    def check_session(
        self,
        session: ScheduledSession,
        snapshot: ScheduleSnapshot | None = None,
    ) -> list[ScheduleConflict]:
        """Re-check an existing session against everything except itself."""
        return self.check(SessionCandidate.from_session(session), snapshot)

    def _conflict(
        self,
        rule: str,
        conflict_type: ConflictType,
        candidate: SessionCandidate,
        description: BilingualText,
        other: str | None = None,
        severity: ConflictSeverity | None = None,
        affected: list[str] | None = None,
        conflicting_session_id: str | None = None,
        window_id: str | None = None,
    ) -> ScheduleConflict:
        subject = candidate.session_id or (
            f"{candidate.therapist_id}:{candidate.session_date}:"
            f"{format_time(candidate.start_time)}-{format_time(candidate.end_time)}"
        )
        return ScheduleConflict(
            id=deterministic_id("conflict", rule, subject, other or ""),
            conflict_type=conflict_type,
            severity=severity or self.severity.severity_for(rule),
            description=description,
            primary_session_id=candidate.session_id,
            conflicting_session_id=conflicting_session_id,
            affected_resources=affected or [candidate.therapist_id],
            conflict_date=candidate.session_date,
            window_id=window_id,
            rule=rule,
            detected_at=datetime.now(),
        )

    def _check_availability(self, candidate: SessionCandidate, snapshot: ScheduleSnapshot) -> list[ScheduleConflict]:
        start, end = candidate.start_minutes, candidate.end_minutes
        resolved = snapshot.resolved(candidate.therapist_id, candidate.session_date)
        conflicts = []

        for mask in resolved:
            if mask.bookable or not overlaps(start, end, mask.start_minutes, mask.end_minutes):
                continue
            conflicts.append(
                self._conflict(
                    "time_off",
                    ConflictType.TIME_CONSTRAINT,
                    candidate,
                    message("time_off", date=candidate.session_date.isoformat(), reason=mask.reason or mask.source),
                    other=mask.window_id,
                    window_id=mask.window_id,
                )
            )
        if conflicts:
            return conflicts

        covering = [w for w in resolved if w.bookable and w.covers(start, end)]
        if not covering:
            return [
                self._conflict(
                    "outside_availability",
                    ConflictType.TIME_CONSTRAINT,
                    candidate,
                    message(
                        "outside_availability",
                        date=candidate.session_date.isoformat(),
                        start=format_time(candidate.start_time),
                        end=format_time(candidate.end_time),
                    ),
                )
            ]

        full = []
        for window in covering:
            booked = snapshot.window_occupancy(window, exclude_session_id=candidate.session_id)
            if booked < window.capacity:
                return []
            full.append((window, booked))

        window, booked = full[0]
        return [
            self._conflict(
                "window_at_capacity",
                ConflictType.TIME_CONSTRAINT,
                candidate,
                message(
                    "window_at_capacity",
                    start=format_time(minutes_to_time(window.start_minutes)),
                    end=format_time(minutes_to_time(window.end_minutes)),
                    booked=booked,
                    capacity=window.capacity,
                ),
                other=window.window_id,
                window_id=window.window_id,
            )
        ]

    def _check_sessions(self, candidate: SessionCandidate, snapshot: ScheduleSnapshot) -> list[ScheduleConflict]:
        start, end = candidate.start_minutes, candidate.end_minutes
        conflicts = []
        nearest_gap: tuple[int, ScheduledSession] | None = None

        for session in snapshot.sessions_on(candidate.session_date):
            if session.id == candidate.session_id:
                continue
            collides = overlaps(start, end, session.start_minutes, session.end_minutes)

            if session.therapist_id == candidate.therapist_id:
                if collides:
                    rule = (
                        "therapist_overlap_committed"
                        if session.status in COMMITTED_STATUSES
                        else "therapist_overlap_scheduled"
                    )
                    conflicts.append(
                        self._conflict(
                            rule,
                            ConflictType.THERAPIST_DOUBLE_BOOKING,
                            candidate,
                            message(
                                "therapist_overlap",
                                session=session.session_number,
                                start=format_time(session.start_time),
                                end=format_time(session.end_time),
                            ),
                            other=session.id,
                            conflicting_session_id=session.id,
                        )
                    )
                elif candidate.avoid_back_to_back:
                    gap = max(start - session.end_minutes, session.start_minutes - end)
                    if gap < self.policy.min_break_minutes and (nearest_gap is None or gap < nearest_gap[0]):
                        nearest_gap = (gap, session)

            if not collides:
                continue
            if candidate.room_id and session.room_id == candidate.room_id:
                conflicts.append(
                    self._conflict(
                        "room_overlap",
                        ConflictType.ROOM_UNAVAILABLE,
                        candidate,
                        message("room_overlap", room=candidate.room_id, session=session.session_number),
                        other=session.id,
                        affected=[candidate.room_id],
                        conflicting_session_id=session.id,
                    )
                )
            for equipment_id in sorted(set(candidate.equipment_ids) & set(session.equipment_ids)):
                conflicts.append(
                    self._conflict(
                        "equipment_overlap",
                        ConflictType.EQUIPMENT_CONFLICT,
                        candidate,
                        message("equipment_overlap", equipment=equipment_id, session=session.session_number),
                        other=f"{session.id}:{equipment_id}",
                        affected=[equipment_id],
                        conflicting_session_id=session.id,
                    )
                )
            if candidate.student_id and session.student_id == candidate.student_id:
                conflicts.append(
                    self._conflict(
                        "student_overlap",
                        ConflictType.STUDENT_UNAVAILABLE,
                        candidate,
                        message("student_overlap", session=session.session_number),
                        other=session.id,
                        affected=[candidate.student_id],
                        conflicting_session_id=session.id,
                    )
                )

        if nearest_gap is not None:
            gap, session = nearest_gap
            conflicts.append(
                self._conflict(
                    "back_to_back",
                    ConflictType.TIME_CONSTRAINT,
                    candidate,
                    message("back_to_back", gap=gap, minimum=self.policy.min_break_minutes),
                    other=session.id,
                    conflicting_session_id=session.id,
                )
            )
        return conflicts

    def _check_daily_load(self, candidate: SessionCandidate, snapshot: ScheduleSnapshot) -> list[ScheduleConflict]:
        limit = snapshot.daily_limit(candidate.therapist_id, self.policy.max_sessions_per_day)
        booked = [
            s
            for s in snapshot.sessions_on(candidate.session_date, candidate.therapist_id)
            if s.id != candidate.session_id
        ]
        if len(booked) < limit:
            return []
        return [
            self._conflict(
                "daily_limit",
                ConflictType.TIME_CONSTRAINT,
                candidate,
                message("daily_limit", limit=limit),
                other=candidate.session_date.isoformat(),
            )
        ]

    def suggest_alternatives(
        self,
        candidate: SessionCandidate,
        snapshot: ScheduleSnapshot | None = None,
        search_days: int = 7,
        limit: int = MAX_ALTERNATIVE_SLOTS,
    ) -> list[SchedulingSuggestion]:
        """Find conflict-free slots for the same therapist near the requested one.

        Dates within ``search_days`` on either side are searched; slots closer
        in date, then in start time, rank first.
        """
        snapshot = self._snapshot_for(candidate, snapshot)
        duration = candidate.end_minutes - candidate.start_minutes
        found: list[tuple[tuple, SchedulingSuggestion]] = []

        for offset in range(-search_days, search_days + 1):
            day = candidate.session_date + timedelta(days=offset)
            for start in snapshot.slot_starts(candidate.therapist_id, day, duration, self.policy.slot_step_minutes):
                if offset == 0 and start == candidate.start_minutes:
                    continue
                option = replace(
                    candidate,
                    session_date=day,
                    start_time=minutes_to_time(start),
                    end_time=minutes_to_time(start + duration),
                )
                if self.check(option, snapshot):
                    continue
                shift = abs(start - candidate.start_minutes)
                confidence = max(0.0, 100.0 - 10.0 * abs(offset) - shift / 12.0)
                reasons = ["No conflicts for therapist, room, equipment or student"]
                trade_offs = []
                if offset:
                    trade_offs.append(f"Moves the session {abs(offset)} day(s) {'later' if offset > 0 else 'earlier'}")
                if shift:
                    trade_offs.append(f"Start time shifts by {shift} minutes")
                suggestion = SchedulingSuggestion(
                    session_date=day,
                    start_time=option.start_time,
                    end_time=option.end_time,
                    therapist_id=candidate.therapist_id,
                    confidence_score=round(confidence, 1),
                    reasons=reasons,
                    trade_offs=trade_offs,
                    resource_availability=ResourceAvailability(),
                )
                found.append(((abs(offset), shift, day, start), suggestion))

        found.sort(key=lambda item: item[0])
        return [suggestion for _, suggestion in found[:limit]]

