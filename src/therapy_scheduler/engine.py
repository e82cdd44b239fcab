"""Scheduling engine facade over the record store."""

import logging
from datetime import date, timedelta

from .availability import AvailabilityStore
from .bulk import BulkOperationsCoordinator
from .config import ConfigLoader
from .conflicts import ConflictDetector
from .exceptions import CapacityViolationError
from .generator import ScheduleGenerator
from .locking import TherapistLockManager
from .metrics import MetricsCalculator, evaluate_targets
from .models import (
    BulkOperationParams,
    BulkOperationResult,
    BulkOperationType,
    OptimizationConfig,
    OptimizationResult,
    PerformanceTarget,
    ScheduleConflict,
    ScheduledSession,
    SchedulingMetrics,
    SchedulingRequest,
    SchedulingResult,
    SchedulingSuggestion,
    SessionCandidate,
    TemplateApplication,
)
from .notifier import LoggingNotifier, NotificationEvent, Notifier
from .optimizer import ScheduleOptimizer
from .snapshot import ScheduleSnapshot
from .store import RecordStore
from .templates import TemplateManager

logger = logging.getLogger(__name__)


class SchedulingEngine:
    """Entry point for every scheduling operation.

    Each call reads a snapshot from the store, computes over it and, for
    committing calls, writes back while holding the locks of every
    therapist involved. Notifications go out after a successful commit; a
    failing notifier is logged and never undoes the commit.
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier | None = None,
        config: ConfigLoader | None = None,
        lock_manager: TherapistLockManager | None = None,
    ):
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.config = config or ConfigLoader()
        self.locks = lock_manager or TherapistLockManager()

        self.policy = self.config.policy
        self.severity = self.config.severity
        self.availability = AvailabilityStore(store)
        self.templates = TemplateManager(store, self.availability, self.policy, self.severity)
        self.detector = ConflictDetector(self.severity, self.policy, store)
        self.generator = ScheduleGenerator(self.detector, self.policy, self.severity)
        self.optimizer = ScheduleOptimizer(self.detector, self.policy)
        self.bulk = BulkOperationsCoordinator(store, self.detector, self.availability, self.policy)
        self.metrics = MetricsCalculator(self.policy)

    def _notify(self, event: NotificationEvent) -> None:
        try:
            self.notifier.notify(event)
        except Exception as exc:
            logger.warning(f"Notifier failed for {event.event_type}: {exc}")

    def _reserve(self, session: ScheduledSession, warnings: list[str]) -> None:
        try:
            self.availability.reserve(session)
        except CapacityViolationError as exc:
            warnings.append(f"Session {session.session_number} committed over capacity: {exc}")
            logger.warning(f"Session {session.id} committed over capacity: {exc}")

    def generate_schedule(self, request: SchedulingRequest, commit: bool = False) -> SchedulingResult:
        """Generate sessions for a demand, optionally committing them.

        Without ``commit`` nothing is written; the same request against the
        same store state always produces the same result.
        """
        therapist_ids = [request.preferred_therapist_id] if request.preferred_therapist_id else self.store.therapist_ids()
        with self.locks.hold(therapist_ids):
            snapshot = ScheduleSnapshot.from_store(
                self.store,
                request.start_date,
                request.end_date,
                therapist_ids=[request.preferred_therapist_id] if request.preferred_therapist_id else None,
            )
            result = self.generator.generate(request, snapshot)
            if not commit:
                return result

            committed = []
            for session in result.generated_sessions:
                if self.store.get("session", session.id) is not None:
                    logger.debug(f"Session {session.id} already committed")
                    continue
                self.store.upsert("session", session, expected_version=0)
                self._reserve(session, result.warnings)
                committed.append(session)

        if committed:
            self._notify(
                NotificationEvent(
                    event_type="sessions_generated",
                    therapist_ids=sorted({s.therapist_id for s in committed}),
                    session_ids=[s.id for s in committed],
                    payload={"demand_ref": request.demand_ref},
                )
            )
        return result

    def check_conflicts(self, candidate: SessionCandidate) -> list[ScheduleConflict]:
        """Check a placement against the store; reads only and takes no locks."""
        return self.detector.check(candidate)

    def suggest_alternatives(self, candidate: SessionCandidate) -> list[SchedulingSuggestion]:
        snapshot = ScheduleSnapshot.from_store(
            self.store,
            candidate.session_date - timedelta(days=7),
            candidate.session_date + timedelta(days=7),
            therapist_ids=[candidate.therapist_id],
        )
        return self.detector.suggest_alternatives(candidate, snapshot)

    def optimize_schedule(
        self,
        sessions: list[ScheduledSession],
        config: OptimizationConfig | None = None,
        commit: bool = False,
    ) -> OptimizationResult:
        """Optimize a session set; with ``commit`` relocated sessions are written back."""
        config = config or OptimizationConfig()
        if not sessions:
            return self.optimizer.optimize([], config, ScheduleSnapshot())

        start = config.period_start or min(s.session_date for s in sessions)
        end = config.period_end or max(s.session_date for s in sessions)
        therapist_ids = sorted({s.therapist_id for s in sessions})
        with self.locks.hold(therapist_ids):
            snapshot = ScheduleSnapshot.from_store(self.store, start, end, therapist_ids=therapist_ids)
            result = self.optimizer.optimize(sessions, config, snapshot)
            if not commit or not result.relocations:
                return result

            originals = {s.id: s for s in sessions}
            moved_ids = {r.session_id for r in result.relocations}
            warnings: list[str] = []
            for session in result.sessions:
                if session.id not in moved_ids:
                    continue
                original = originals[session.id]
                stored = self.store.upsert("session", session, expected_version=original.version)
                session.version = stored.version
                self.availability.release(original)
                self._reserve(session, warnings)

        self._notify(
            NotificationEvent(
                event_type="schedule_optimized",
                therapist_ids=therapist_ids,
                session_ids=sorted(moved_ids),
                payload={"improvement_percentage": round(result.improvement_percentage, 2)},
            )
        )
        return result

    def apply_bulk_operation(
        self,
        session_ids: list[str],
        operation: BulkOperationType,
        params: BulkOperationParams | None = None,
    ) -> BulkOperationResult:
        params = params or BulkOperationParams()
        therapist_ids = {
            session.therapist_id
            for session in (self.store.get("session", sid) for sid in session_ids)
            if session is not None
        }
        if params.new_therapist_id:
            therapist_ids.add(params.new_therapist_id)

        with self.locks.hold(therapist_ids):
            result = self.bulk.apply(session_ids, operation, params)

        if result.successful_session_ids:
            self._notify(
                NotificationEvent(
                    event_type=f"bulk_{result.operation.value}",
                    therapist_ids=sorted(therapist_ids),
                    session_ids=result.successful_session_ids + [s.id for s in result.new_sessions],
                    payload={"operation_id": result.operation_id},
                )
            )
        return result

    def rollback_bulk_operation(self, operation_id: str) -> int:
        return self.bulk.rollback(operation_id)

    def apply_template(
        self,
        template_id: str,
        therapist_id: str,
        start_date: date,
        horizon_weeks: int | None = None,
    ) -> TemplateApplication:
        with self.locks.hold([therapist_id]):
            return self.templates.apply(template_id, therapist_id, start_date, horizon_weeks)

    def compute_metrics(
        self,
        period_start: date,
        period_end: date,
        weights: dict[str, float] | None = None,
    ) -> SchedulingMetrics:
        return self.metrics.compute(
            self.store.sessions_between(period_start, period_end),
            self.store.query("window"),
            period_start,
            period_end,
            exceptions=self.store.query(
                "exception", lambda e: e.start_date <= period_end and e.end_date >= period_start
            ),
            weights=weights,
        )

    def evaluate_targets(self, metrics: SchedulingMetrics) -> list[PerformanceTarget]:
        return evaluate_targets(metrics)
