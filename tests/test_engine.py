"""Tests for the scheduling engine facade."""

from concurrent.futures import ThreadPoolExecutor
from datetime import time, timedelta

import pytest

from therapy_scheduler.config import ConfigLoader
from therapy_scheduler.engine import SchedulingEngine
from therapy_scheduler.models import (
    AvailabilityTemplate,
    BilingualText,
    BulkOperationParams,
    BulkOperationType,
    ConflictSeverity,
    ConflictType,
    OptimizationConfig,
    SchedulingRequest,
    SessionCandidate,
    SessionStatus,
    TemplateSlot,
    TimeSlot,
)
from therapy_scheduler.notifier import Notifier, RecordingNotifier


class FailingNotifier(Notifier):
    def notify(self, event):
        raise RuntimeError("mail server down")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, notifier, tmp_path):
    return SchedulingEngine(store, notifier=notifier, config=ConfigLoader(tmp_path))


@pytest.fixture
def request_d1(monday):
    return SchedulingRequest(
        demand_ref="D1",
        start_date=monday,
        end_date=monday + timedelta(days=20),
        total_sessions=6,
        sessions_per_week=2,
        session_duration=60,
    )


def active_sessions(store):
    return [s for s in store.query("session") if s.status.is_active]


class TestGenerateSchedule:
    """Tests for generation through the engine."""

    def test_preview_writes_nothing(self, engine, store, request_d1, notifier):
        result = engine.generate_schedule(request_d1)
        assert len(result.generated_sessions) == 6
        assert store.query("session") == []
        assert notifier.events == []

    def test_preview_is_replayable(self, engine, request_d1):
        first = engine.generate_schedule(request_d1)
        second = engine.generate_schedule(request_d1)
        assert [s.id for s in first.generated_sessions] == [s.id for s in second.generated_sessions]

    def test_commit_persists_and_notifies(self, engine, store, request_d1, notifier):
        result = engine.generate_schedule(request_d1, commit=True)

        stored = store.query("session")
        assert {s.id for s in stored} == {s.id for s in result.generated_sessions}
        assert all(s.version == 1 for s in stored)
        assert [e.event_type for e in notifier.events] == ["sessions_generated"]
        assert notifier.events[0].therapist_ids == ["T1"]
        assert len(notifier.events[0].session_ids) == 6

    def test_second_commit_never_double_books(self, engine, store, request_d1):
        engine.generate_schedule(request_d1, commit=True)
        again = engine.generate_schedule(request_d1, commit=True)

        sessions = active_sessions(store)
        assert len(sessions) == 6 + len(again.generated_sessions)
        for i, first in enumerate(sessions):
            for second in sessions[i + 1 :]:
                assert not first.overlaps(second)

    def test_parallel_commits_for_same_therapist(self, engine, store, monday):
        requests = [
            SchedulingRequest(
                demand_ref=f"D{n}",
                start_date=monday,
                end_date=monday + timedelta(days=6),
                total_sessions=3,
                sessions_per_week=3,
                session_duration=60,
            )
            for n in range(4)
        ]
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda r: engine.generate_schedule(r, commit=True), requests))

        sessions = active_sessions(store)
        for i, first in enumerate(sessions):
            for second in sessions[i + 1 :]:
                assert not (first.therapist_id == second.therapist_id and first.overlaps(second))

    def test_commit_over_capacity_warns(self, engine, store, make_window, monday):
        store.upsert(
            "window",
            make_window("w-mon", specific_date=monday, max_sessions_per_slot=1, current_bookings=1),
        )
        request = SchedulingRequest(
            demand_ref="D1",
            start_date=monday,
            end_date=monday + timedelta(days=6),
            total_sessions=1,
            sessions_per_week=1,
            session_duration=60,
            preferred_days=[0],
            flexibility_score=80,
        )
        result = engine.generate_schedule(request, commit=True)

        assert len(store.query("session")) == 1
        assert any("over capacity" in w for w in result.warnings)

    def test_failing_notifier_keeps_commit(self, store, request_d1, tmp_path):
        engine = SchedulingEngine(store, notifier=FailingNotifier(), config=ConfigLoader(tmp_path))
        engine.generate_schedule(request_d1, commit=True)
        assert len(store.query("session")) == 6

    def test_locks_released(self, engine, request_d1):
        engine.generate_schedule(request_d1, commit=True)
        assert not engine.locks.is_locked("T1")


class TestConflictChecks:
    """Tests for conflict checks and suggestions through the engine."""

    def test_double_booking_after_commit(self, engine, request_d1, monday):
        engine.generate_schedule(request_d1, commit=True)
        candidate = SessionCandidate("T1", monday, time(9, 0), time(10, 0))

        conflicts = engine.check_conflicts(candidate)

        double_bookings = [c for c in conflicts if c.conflict_type == ConflictType.THERAPIST_DOUBLE_BOOKING]
        assert double_bookings
        assert double_bookings[0].severity in (ConflictSeverity.HIGH, ConflictSeverity.CRITICAL)

    def test_free_slot(self, engine, monday):
        assert engine.check_conflicts(SessionCandidate("T1", monday, time(9, 0), time(10, 0))) == []

    def test_suggest_alternatives(self, engine, request_d1, monday):
        engine.generate_schedule(request_d1, commit=True)
        suggestions = engine.suggest_alternatives(SessionCandidate("T1", monday, time(9, 0), time(10, 0)))
        assert suggestions
        assert all(s.therapist_id == "T1" for s in suggestions)


class TestOptimizeSchedule:
    """Tests for optimization through the engine."""

    def test_commit_writes_relocations(self, engine, store, make_session, monday, notifier):
        stored = store.upsert("session", make_session("S1", monday, "09:00", "10:00"))
        config = OptimizationConfig(preferred_times={"D1": [TimeSlot(time(10, 30), time(11, 30))]})

        result = engine.optimize_schedule([stored], config, commit=True)

        assert result.relocations
        assert store.get("session", "S1").start_time == time(10, 30)
        assert store.get("session", "S1").version == 2
        assert notifier.events[-1].event_type == "schedule_optimized"

    def test_preview_writes_nothing(self, engine, store, make_session, monday):
        stored = store.upsert("session", make_session("S1", monday, "09:00", "10:00"))
        config = OptimizationConfig(preferred_times={"D1": [TimeSlot(time(10, 30), time(11, 30))]})
        engine.optimize_schedule([stored], config)
        assert store.get("session", "S1").start_time == time(9, 0)

    def test_empty(self, engine):
        assert engine.optimize_schedule([]).sessions == []


class TestBulkAndTemplates:
    """Tests for bulk operations and templates through the engine."""

    def test_bulk_cancel_and_rollback(self, engine, store, request_d1, notifier):
        generated = engine.generate_schedule(request_d1, commit=True).generated_sessions
        ids = [s.id for s in generated[:2]]

        result = engine.apply_bulk_operation(ids, BulkOperationType.CANCEL, BulkOperationParams(reason="Closure"))

        assert result.successful_session_ids == ids
        assert notifier.events[-1].event_type == "bulk_cancel"
        assert all(store.get("session", sid).status == SessionStatus.CANCELLED for sid in ids)

        assert engine.rollback_bulk_operation(result.operation_id) == 2
        assert all(store.get("session", sid).status == SessionStatus.SCHEDULED for sid in ids)

    def test_bulk_without_success_does_not_notify(self, engine, notifier):
        engine.apply_bulk_operation(["missing"], BulkOperationType.CANCEL)
        assert notifier.events == []

    def test_apply_template(self, engine, store, monday):
        store.upsert(
            "template",
            AvailabilityTemplate(
                id="tpl",
                name=BilingualText("Tuesdays"),
                slots=[TemplateSlot(1, time(13, 0), time(15, 0))],
            ),
        )
        application = engine.apply_template("tpl", "T1", monday, horizon_weeks=2)
        assert application.applied == 2
        assert len(store.windows_for("T1")) == 5


class TestMetrics:
    """Tests for metrics through the engine."""

    def test_compute_metrics(self, engine, request_d1, monday):
        engine.generate_schedule(request_d1, commit=True)
        metrics = engine.compute_metrics(monday, monday + timedelta(days=20))

        assert metrics.total_sessions == 6
        assert metrics.therapist_utilization == {"T1": 22.22}
        targets = engine.evaluate_targets(metrics)
        assert [t.metric_name for t in targets] == ["utilization_rate", "no_show_rate", "cancellation_rate"]
