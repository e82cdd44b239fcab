"""Test fixtures for the therapy scheduling engine."""

from datetime import date

import pytest

from therapy_scheduler.models import (
    AvailabilityWindow,
    BilingualText,
    Equipment,
    Room,
    ScheduledSession,
    Therapist,
)
from therapy_scheduler.snapshot import ScheduleSnapshot
from therapy_scheduler.store import InMemoryRecordStore
from therapy_scheduler.utils import parse_time

# 2025-01-06 is a Monday
MONDAY = date(2025, 1, 6)


@pytest.fixture
def monday():
    return MONDAY


@pytest.fixture
def make_window():
    """Factory for availability windows (recurring unless a date is given)."""

    def _make(
        window_id,
        therapist_id="T1",
        start="09:00",
        end="12:00",
        day_of_week=None,
        specific_date=None,
        **kwargs,
    ):
        return AvailabilityWindow(
            id=window_id,
            therapist_id=therapist_id,
            start_time=parse_time(start),
            end_time=parse_time(end),
            day_of_week=day_of_week,
            specific_date=specific_date,
            is_recurring=specific_date is None,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_session():
    """Factory for scheduled sessions."""

    def _make(session_id, day, start="09:00", end="10:00", therapist_id="T1", **kwargs):
        kwargs.setdefault("session_number", session_id)
        kwargs.setdefault("demand_ref", "D1")
        return ScheduledSession(
            id=session_id,
            therapist_id=therapist_id,
            session_date=day,
            start_time=parse_time(start),
            end_time=parse_time(end),
            **kwargs,
        )

    return _make


@pytest.fixture
def therapist():
    return Therapist(id="T1", name=BilingualText("Therapist One", "المعالج الأول"))


@pytest.fixture
def weekday_windows(make_window):
    """Recurring Monday, Wednesday and Friday 09:00-12:00 windows, one session per slot."""
    return [make_window(f"w-{day}", day_of_week=day) for day in (0, 2, 4)]


@pytest.fixture
def rooms():
    return [
        Room(id="R1", name="Room 1", room_type="sensory"),
        Room(id="R2", name="Room 2", room_type="sensory"),
    ]


@pytest.fixture
def equipment():
    return [Equipment(id="E1", name="Swing", equipment_type="sensory")]


@pytest.fixture
def store(therapist, weekday_windows, rooms, equipment):
    """Record store holding one therapist with Mon/Wed/Fri availability."""
    store = InMemoryRecordStore()
    store.upsert("therapist", therapist)
    for window in weekday_windows:
        store.upsert("window", window)
    for room in rooms:
        store.upsert("room", room)
    for item in equipment:
        store.upsert("equipment", item)
    return store


@pytest.fixture
def snapshot(therapist, weekday_windows, rooms, equipment):
    return ScheduleSnapshot(
        windows=weekday_windows,
        therapists=[therapist],
        rooms=rooms,
        equipment=equipment,
    )
