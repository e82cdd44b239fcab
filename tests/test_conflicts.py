"""Tests for the conflict detector."""

from datetime import time, timedelta

import pytest

from therapy_scheduler.config import SeverityConfig
from therapy_scheduler.conflicts import ConflictDetector, sort_conflicts, worst_severity
from therapy_scheduler.exceptions import InvalidInputError
from therapy_scheduler.models import (
    AvailabilityException,
    BilingualText,
    ConflictSeverity,
    ConflictType,
    SessionCandidate,
    SessionStatus,
    Therapist,
)
from therapy_scheduler.snapshot import ScheduleSnapshot


def candidate(day, start="09:00", end="10:00", therapist_id="T1", **kwargs):
    hours, minutes = (int(p) for p in start.split(":"))
    end_hours, end_minutes = (int(p) for p in end.split(":"))
    return SessionCandidate(
        therapist_id=therapist_id,
        session_date=day,
        start_time=time(hours, minutes),
        end_time=time(end_hours, end_minutes),
        **kwargs,
    )


@pytest.fixture
def detector():
    return ConflictDetector()


@pytest.fixture
def shared_snapshot(make_window, rooms, equipment):
    """Two therapists with roomy Monday windows (two sessions per slot)."""

    def _make(*sessions, therapists=()):
        windows = [
            make_window("w-t1", therapist_id="T1", start="08:00", end="16:00", day_of_week=0, max_sessions_per_slot=2),
            make_window("w-t2", therapist_id="T2", start="08:00", end="16:00", day_of_week=0, max_sessions_per_slot=2),
        ]
        return ScheduleSnapshot(
            sessions=sessions, windows=windows, rooms=rooms, equipment=equipment, therapists=therapists
        )

    return _make


class TestAvailabilityRules:
    """Tests for availability-based conflicts."""

    def test_clean_candidate(self, detector, snapshot, monday):
        assert detector.check(candidate(monday), snapshot) == []

    def test_outside_availability(self, detector, snapshot, monday):
        conflicts = detector.check(candidate(monday + timedelta(days=1)), snapshot)
        assert [c.rule for c in conflicts] == ["outside_availability"]
        assert conflicts[0].conflict_type == ConflictType.TIME_CONSTRAINT
        assert conflicts[0].severity == ConflictSeverity.MEDIUM

    def test_partially_outside_window(self, detector, snapshot, monday):
        conflicts = detector.check(candidate(monday, "11:30", "12:30"), snapshot)
        assert [c.rule for c in conflicts] == ["outside_availability"]

    def test_time_off_replaces_outside_availability(self, detector, weekday_windows, monday):
        exception = AvailabilityException("X1", "T1", monday, monday, reason=BilingualText("Sick leave", "إجازة مرضية"))
        snapshot = ScheduleSnapshot(windows=weekday_windows, exceptions=[exception])
        conflicts = detector.check(candidate(monday), snapshot)
        assert [c.rule for c in conflicts] == ["time_off"]
        assert conflicts[0].severity == ConflictSeverity.HIGH
        assert "Sick leave" in conflicts[0].description.en
        assert "إجازة مرضية" not in conflicts[0].description.en

    def test_window_at_capacity(self, detector, weekday_windows, make_session, monday):
        snapshot = ScheduleSnapshot(
            sessions=[make_session("S1", monday, "09:00", "10:00")], windows=weekday_windows
        )
        conflicts = detector.check(candidate(monday, "11:00", "12:00"), snapshot)
        assert [c.rule for c in conflicts] == ["window_at_capacity"]
        assert conflicts[0].window_id == "w-0"


class TestSessionRules:
    """Tests for session overlap conflicts."""

    def test_double_booking_scheduled(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, "09:00", "10:00"))
        conflicts = detector.check(candidate(monday, "09:30", "10:30"), snapshot)
        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == ConflictType.THERAPIST_DOUBLE_BOOKING
        assert conflicts[0].severity == ConflictSeverity.HIGH
        assert conflicts[0].conflicting_session_id == "S1"

    def test_double_booking_confirmed_is_critical(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, status=SessionStatus.CONFIRMED))
        conflicts = detector.check(candidate(monday), snapshot)
        assert conflicts[0].severity == ConflictSeverity.CRITICAL

    def test_cancelled_session_ignored(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, status=SessionStatus.CANCELLED))
        assert detector.check(candidate(monday), snapshot) == []

    def test_touching_sessions_do_not_overlap(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, "09:00", "10:00"))
        assert detector.check(candidate(monday, "10:00", "11:00"), snapshot) == []

    def test_room_overlap(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, therapist_id="T2", room_id="R1"))
        conflicts = detector.check(candidate(monday, room_id="R1"), snapshot)
        assert [c.conflict_type for c in conflicts] == [ConflictType.ROOM_UNAVAILABLE]
        assert conflicts[0].affected_resources == ["R1"]

    def test_equipment_overlap_per_item(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(
            make_session("S1", monday, therapist_id="T2", equipment_ids=["E1", "E2"])
        )
        conflicts = detector.check(candidate(monday, equipment_ids=("E1", "E2", "E3")), snapshot)
        assert sorted(c.affected_resources[0] for c in conflicts) == ["E1", "E2"]
        assert all(c.severity == ConflictSeverity.LOW for c in conflicts)

    def test_student_overlap(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, therapist_id="T2", student_id="ST1"))
        conflicts = detector.check(candidate(monday, student_id="ST1"), snapshot)
        assert [c.conflict_type for c in conflicts] == [ConflictType.STUDENT_UNAVAILABLE]
        assert conflicts[0].severity == ConflictSeverity.HIGH

    def test_back_to_back_reports_nearest_only(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(
            make_session("S1", monday, "08:00", "09:00"),
            make_session("S2", monday, "10:15", "11:00"),
        )
        conflicts = detector.check(candidate(monday, "09:05", "10:05", avoid_back_to_back=True), snapshot)
        assert [c.rule for c in conflicts] == ["back_to_back"]
        assert conflicts[0].conflicting_session_id == "S1"

    def test_back_to_back_ignored_without_preference(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, "08:00", "09:00"))
        assert detector.check(candidate(monday, "09:05", "10:05"), snapshot) == []

    def test_daily_limit(self, detector, shared_snapshot, make_session, monday):
        therapist = Therapist(id="T1", name=BilingualText("One"), max_sessions_per_day=1)
        snapshot = shared_snapshot(make_session("S1", monday, "08:00", "09:00"), therapists=[therapist])
        conflicts = detector.check(candidate(monday, "13:00", "14:00"), snapshot)
        assert [c.rule for c in conflicts] == ["daily_limit"]

    def test_existing_session_not_checked_against_itself(self, detector, shared_snapshot, make_session, monday):
        session = make_session("S1", monday)
        snapshot = shared_snapshot(session)
        assert detector.check_session(session, snapshot) == []


class TestDetectorContract:
    """Tests for ordering, determinism and configuration."""

    def test_idempotent(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(
            make_session("S1", monday, room_id="R1", equipment_ids=["E1"]),
            make_session("S2", monday, therapist_id="T2", room_id="R1"),
        )
        proposed = candidate(monday, room_id="R1", equipment_ids=("E1",))
        assert detector.check(proposed, snapshot) == detector.check(proposed, snapshot)

    def test_sorted_by_severity(self, detector, shared_snapshot, make_session, monday):
        snapshot = shared_snapshot(make_session("S1", monday, room_id="R1", equipment_ids=["E1"]))
        conflicts = detector.check(candidate(monday, room_id="R1", equipment_ids=("E1",)), snapshot)
        assert [c.severity for c in conflicts] == [
            ConflictSeverity.HIGH,
            ConflictSeverity.MEDIUM,
            ConflictSeverity.LOW,
        ]
        assert sort_conflicts(list(reversed(conflicts))) == conflicts
        assert worst_severity(conflicts) == ConflictSeverity.HIGH

    def test_severity_is_configurable(self, shared_snapshot, make_session, monday):
        detector = ConflictDetector(SeverityConfig(rules={"room_overlap": "critical"}))
        snapshot = shared_snapshot(make_session("S1", monday, therapist_id="T2", room_id="R1"))
        conflicts = detector.check(candidate(monday, room_id="R1"), snapshot)
        assert conflicts[0].severity == ConflictSeverity.CRITICAL

    def test_unknown_severity_rule(self):
        with pytest.raises(InvalidInputError):
            SeverityConfig(rules={"gravity": "low"})

    def test_needs_snapshot_or_store(self, detector, monday):
        with pytest.raises(ValueError):
            detector.check(candidate(monday))

    def test_reads_from_store(self, store, make_session, monday):
        store.upsert("session", make_session("S1", monday, status=SessionStatus.CONFIRMED))
        detector = ConflictDetector(store=store)
        conflicts = detector.check(candidate(monday, "09:30", "10:30"))
        assert any(
            c.conflict_type == ConflictType.THERAPIST_DOUBLE_BOOKING and c.severity == ConflictSeverity.CRITICAL
            for c in conflicts
        )


class TestSuggestAlternatives:
    """Tests for alternative slot suggestions."""

    def test_nearest_free_slots_first(self, detector, weekday_windows, make_session, monday):
        snapshot = ScheduleSnapshot(
            sessions=[make_session("S1", monday, "09:00", "10:00")], windows=weekday_windows
        )
        suggestions = detector.suggest_alternatives(candidate(monday, "09:00", "10:00"), snapshot)
        wednesday = monday + timedelta(days=2)
        assert len(suggestions) == 5
        assert all(s.session_date == wednesday for s in suggestions)
        assert suggestions[0].start_time == time(9, 0)
        assert suggestions[0].confidence_score == 80.0
        assert suggestions[1].confidence_score < suggestions[0].confidence_score

    def test_suggestions_are_conflict_free(self, detector, weekday_windows, make_session, monday):
        snapshot = ScheduleSnapshot(
            sessions=[make_session("S1", monday, "09:00", "10:00")], windows=weekday_windows
        )
        for suggestion in detector.suggest_alternatives(candidate(monday), snapshot):
            proposed = candidate(
                suggestion.session_date,
                suggestion.start_time.strftime("%H:%M"),
                suggestion.end_time.strftime("%H:%M"),
            )
            assert detector.check(proposed, snapshot) == []
