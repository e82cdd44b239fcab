"""Tests for availability resolution and the availability store."""

from datetime import date, time, timedelta

import pytest

from therapy_scheduler.availability import AvailabilityStore, resolve_day, resolve_windows
from therapy_scheduler.exceptions import CapacityViolationError, InvalidInputError, InvalidWindowError
from therapy_scheduler.models import AvailabilityException, BilingualText, TimeSlot
from therapy_scheduler.store import InMemoryRecordStore


class TestResolveDay:
    """Tests for the three-layer availability resolution."""

    def test_recurring_window(self, weekday_windows, monday):
        resolved = resolve_day(weekday_windows, [], "T1", monday)
        assert len(resolved) == 1
        assert resolved[0].source == "recurring"
        assert (resolved[0].start_minutes, resolved[0].end_minutes) == (540, 720)
        assert resolved[0].bookable

    def test_no_window_on_tuesday(self, weekday_windows, monday):
        assert resolve_day(weekday_windows, [], "T1", monday + timedelta(days=1)) == []

    def test_other_therapist_ignored(self, weekday_windows, monday):
        assert resolve_day(weekday_windows, [], "T2", monday) == []

    def test_date_specific_replaces_recurring(self, make_window, weekday_windows, monday):
        override = make_window("w-special", start="13:00", end="15:00", specific_date=monday, current_bookings=1)
        resolved = resolve_day(weekday_windows + [override], [], "T1", monday)
        assert [(r.start_minutes, r.end_minutes, r.source) for r in resolved] == [(780, 900, "date_specific")]
        assert resolved[0].booked == 1

    def test_override_only_affects_its_date(self, make_window, weekday_windows, monday):
        override = make_window("w-special", start="13:00", end="15:00", specific_date=monday)
        wednesday = monday + timedelta(days=2)
        resolved = resolve_day(weekday_windows + [override], [], "T1", wednesday)
        assert [r.source for r in resolved] == ["recurring"]

    def test_time_off_window_masks(self, make_window, weekday_windows, monday):
        time_off = make_window("off", start="10:00", end="11:00", specific_date=monday, is_time_off=True)
        resolved = resolve_day(weekday_windows + [time_off], [], "T1", monday)
        assert [(r.start_minutes, r.end_minutes, r.source) for r in resolved] == [
            (540, 600, "recurring"),
            (600, 660, "time_off"),
            (660, 720, "recurring"),
        ]
        assert not resolved[1].bookable

    def test_unavailable_window_masks(self, make_window, monday):
        windows = [make_window("w-0", day_of_week=0, is_available=False)]
        resolved = resolve_day(windows, [], "T1", monday)
        assert len(resolved) == 1
        assert resolved[0].source == "unavailable"
        assert not resolved[0].bookable

    def test_all_day_exception_masks(self, weekday_windows, monday):
        exception = AvailabilityException(
            "X1", "T1", monday, monday, reason=BilingualText("Conference", "مؤتمر")
        )
        resolved = resolve_day(weekday_windows, [exception], "T1", monday)
        assert [r.bookable for r in resolved] == [False]
        assert resolved[0].source == "exception"
        assert resolved[0].reason == "Conference"

    def test_selective_exception_clips_to_alternative_times(self, weekday_windows, monday):
        exception = AvailabilityException(
            "X1",
            "T1",
            monday,
            monday,
            is_available=True,
            alternative_times=[TimeSlot(time(10, 0), time(11, 0))],
        )
        resolved = resolve_day(weekday_windows, [exception], "T1", monday)
        assert [(r.start_minutes, r.end_minutes) for r in resolved if r.bookable] == [(600, 660)]

    def test_deterministic(self, make_window, weekday_windows, monday):
        time_off = make_window("off", start="10:00", end="11:00", specific_date=monday, is_time_off=True)
        first = resolve_day(weekday_windows + [time_off], [], "T1", monday)
        second = resolve_day(list(reversed(weekday_windows + [time_off])), [], "T1", monday)
        assert first == second

    def test_resolve_windows_covers_range(self, weekday_windows, monday):
        resolved = resolve_windows(weekday_windows, [], "T1", monday, monday + timedelta(days=6))
        assert len(resolved) == 7
        assert [bool(resolved[monday + timedelta(days=d)]) for d in range(7)] == [
            True, False, True, False, True, False, False
        ]


class TestAvailabilityStore:
    """Tests for AvailabilityStore validation and booking counters."""

    @pytest.fixture
    def availability(self):
        return AvailabilityStore(InMemoryRecordStore())

    def test_rejects_empty_range(self, availability, make_window):
        with pytest.raises(InvalidWindowError):
            availability.upsert(make_window("w", start="12:00", end="09:00", day_of_week=0))

    def test_rejects_zero_capacity(self, availability, make_window):
        with pytest.raises(InvalidWindowError):
            availability.upsert(make_window("w", day_of_week=0, max_sessions_per_slot=0))

    def test_rejects_window_without_day(self, availability, make_window):
        with pytest.raises(InvalidWindowError):
            availability.upsert(make_window("w"))

    def test_dated_window_is_not_recurring(self, availability, make_window, monday):
        window = make_window("w", specific_date=monday)
        window.is_recurring = True
        stored = availability.upsert(window)
        assert stored.is_recurring is False
        assert stored.version == 1

    def test_capacity_below_bookings(self, availability, make_window, monday):
        availability.store.upsert(
            "window", make_window("w", specific_date=monday, max_sessions_per_slot=3, current_bookings=2)
        )
        with pytest.raises(CapacityViolationError):
            availability.upsert(make_window("w", specific_date=monday, max_sessions_per_slot=1))

    def test_update_keeps_bookings(self, availability, make_window, monday):
        availability.store.upsert(
            "window", make_window("w", specific_date=monday, max_sessions_per_slot=3, current_bookings=2)
        )
        stored = availability.upsert(make_window("w", specific_date=monday, max_sessions_per_slot=4))
        assert stored.current_bookings == 2

    def test_delete_refused_with_bookings(self, availability, make_window, monday):
        availability.store.upsert(
            "window", make_window("w", specific_date=monday, max_sessions_per_slot=2, current_bookings=1)
        )
        with pytest.raises(CapacityViolationError):
            availability.delete("w")
        availability.delete("w", force=True)
        assert availability.store.get("window", "w") is None

    def test_reserve_and_release(self, availability, make_window, make_session, monday):
        availability.upsert(make_window("w", specific_date=monday, max_sessions_per_slot=2))
        session = make_session("S1", monday, "09:00", "10:00")

        assert availability.reserve(session) == "w"
        assert availability.reserve(session) == "w"
        assert availability.get("w").current_bookings == 2
        with pytest.raises(CapacityViolationError):
            availability.reserve(session)

        assert availability.release(session) == "w"
        assert availability.get("w").current_bookings == 1

    def test_reserve_recurring_has_no_counter(self, availability, make_window, make_session, monday):
        availability.upsert(make_window("w", day_of_week=0))
        assert availability.reserve(make_session("S1", monday)) is None

    def test_exception_validation(self, availability, monday):
        with pytest.raises(InvalidInputError):
            availability.add_exception(AvailabilityException("X1", "T1", monday, monday - timedelta(days=1)))
        with pytest.raises(InvalidInputError):
            availability.add_exception(AvailabilityException("X2", "T1", monday, monday, start_time=time(9, 0)))

    def test_exceptions_for_range(self, availability, monday):
        availability.add_exception(AvailabilityException("X1", "T1", monday, monday))
        availability.add_exception(AvailabilityException("X2", "T2", monday, monday))
        assert [e.id for e in availability.exceptions_for("T1", monday, monday + timedelta(days=6))] == ["X1"]
        assert availability.exceptions_for("T1", monday + timedelta(days=1), monday + timedelta(days=6)) == []
        availability.remove_exception("X1")
        assert availability.exceptions_for("T1", monday, monday) == []

    def test_query_applies_exceptions(self, availability, make_window, monday):
        availability.upsert(make_window("w", day_of_week=0))
        availability.add_exception(
            AvailabilityException("X1", "T1", monday, monday, start_time=time(9, 0), end_time=time(10, 0))
        )
        resolved = availability.query("T1", monday, monday + timedelta(days=7))
        assert [(r.start_minutes, r.bookable) for r in resolved[monday]] == [(540, False), (600, True)]
        assert [r.bookable for r in resolved[monday + timedelta(days=7)]] == [True]

    def test_query_has_no_side_effects(self, availability, make_window, monday):
        availability.upsert(make_window("w", day_of_week=0))
        before = availability.store.to_dict()
        availability.query("T1", monday, monday + timedelta(days=13))
        assert availability.store.to_dict() == before
