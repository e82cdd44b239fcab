"""Bulk reschedule, cancel and modify with per-item outcomes and rollback."""

import copy
import logging
import time as timer
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from .availability import AvailabilityStore
from .config import SchedulingPolicy
from .constants import MAX_RETAINED_BACKUPS
from .conflicts import ConflictDetector, worst_severity
from .exceptions import InvalidInputError, ResourceNotFoundError, SchedulingError
from .models import (
    BulkOperationParams,
    BulkOperationResult,
    BulkOperationType,
    ScheduledSession,
    SessionCandidate,
    SessionStatus,
)
from .snapshot import ScheduleSnapshot
from .store import RecordStore
from .utils import (
    MINUTES_PER_DAY,
    chunked,
    daterange,
    deterministic_id,
    format_time,
    minutes_to_time,
    time_to_minutes,
)

logger = logging.getLogger(__name__)


@dataclass
class _Backup:
    """Prior state of every record an operation wrote (None = did not exist)."""

    records: dict[tuple[str, str], Any] = field(default_factory=dict)

    def capture(self, kind: str, record_id: str, prior: Any) -> None:
        key = (kind, record_id)
        if key not in self.records:
            self.records[key] = copy.deepcopy(prior)

    def merge(self, other: "_Backup") -> None:
        for key, prior in other.records.items():
            self.records.setdefault(key, prior)


class _ItemRejected(SchedulingError):
    """A single bulk item cannot be processed."""


class BulkOperationsCoordinator:
    """Applies one operation to many sessions, item by item.

    Each item is detected, written and reported on its own: a failing item
    lands in ``failed_session_ids``, an item blocked by conflicts in
    ``conflict_session_ids`` and the rest continue. The three id lists
    always add up to the number of requested ids.
    """

    def __init__(
        self,
        store: RecordStore,
        detector: ConflictDetector | None = None,
        availability: AvailabilityStore | None = None,
        policy: SchedulingPolicy | None = None,
        max_backups: int = MAX_RETAINED_BACKUPS,
    ):
        self.store = store
        self.policy = policy or SchedulingPolicy()
        self.detector = detector or ConflictDetector(policy=self.policy)
        self.availability = availability or AvailabilityStore(store)
        self.max_backups = max_backups
        self._backups: dict[str, _Backup] = {}

    def _validate(self, session_ids: list[str], operation: BulkOperationType, params: BulkOperationParams) -> None:
        errors = []
        if not session_ids:
            errors.append("no session ids given")
        if params.batch_size < 1:
            errors.append("batch_size must be at least 1")
        if operation == BulkOperationType.RESCHEDULE:
            if params.new_start_date is None or params.new_end_date is None:
                errors.append("reschedule needs new_start_date and new_end_date")
            elif params.new_start_date > params.new_end_date:
                errors.append("new_start_date is after new_end_date")
        if params.priority is not None and not 1 <= params.priority <= 5:
            errors.append("priority must be between 1 and 5")
        if params.new_therapist_id and not (
            self.store.get("therapist", params.new_therapist_id) or self.store.windows_for(params.new_therapist_id)
        ):
            raise ResourceNotFoundError("therapist", params.new_therapist_id)
        if errors:
            raise InvalidInputError("; ".join(errors), field="bulk operation", errors=errors)

    def apply(
        self,
        session_ids: list[str],
        operation: BulkOperationType,
        params: BulkOperationParams,
        operation_id: str | None = None,
    ) -> BulkOperationResult:
        """Apply an operation to every listed session.

        Raises:
            InvalidInputError: Malformed parameters (before any item is touched)
            ResourceNotFoundError: Unknown target therapist
        """
        operation = BulkOperationType(operation)
        self._validate(session_ids, operation, params)
        started = timer.perf_counter()
        result = BulkOperationResult(
            operation_id=operation_id or str(uuid.uuid4()),
            operation=operation,
            total_requested=len(session_ids),
        )
        backup = _Backup()
        handler = {
            BulkOperationType.RESCHEDULE: self._reschedule,
            BulkOperationType.CANCEL: self._cancel,
            BulkOperationType.MODIFY: self._modify,
        }[operation]

        for batch_number, batch in enumerate(chunked(session_ids, params.batch_size), start=1):
            logger.debug(f"{operation.value} batch {batch_number}: {len(batch)} item(s)")
            for session_id in batch:
                item_backup = _Backup()
                try:
                    session = self._load(session_id)
                    committed = handler(session, params, result, item_backup)
                except SchedulingError as exc:
                    # Undo whatever the item wrote before it failed
                    self._restore(item_backup)
                    result.failed_session_ids.append(session_id)
                    result.item_errors[session_id] = str(exc)
                    logger.warning(f"{operation.value} {session_id} failed: {exc}")
                    continue
                backup.merge(item_backup)
                if committed:
                    result.successful_session_ids.append(session_id)
                else:
                    result.conflict_session_ids.append(session_id)

        if params.create_backup and backup.records:
            self._keep_backup(result.operation_id, backup)
            result.rollback_available = True
        result.processing_time_ms = (timer.perf_counter() - started) * 1000

        logger.info(
            f"Bulk {operation.value} {result.operation_id}: {result.successful_operations} succeeded, "
            f"{len(result.failed_session_ids)} failed, {len(result.conflict_session_ids)} blocked by conflicts"
        )
        return result

    def rollback(self, operation_id: str) -> int:
        """Restore every record an operation wrote; returns the number restored."""
        backup = self._backups.pop(operation_id, None)
        if backup is None:
            raise ResourceNotFoundError("bulk operation backup", operation_id)

        self._restore(backup)
        logger.info(f"Rolled back bulk operation {operation_id}: {len(backup.records)} record(s) restored")
        return len(backup.records)

    def has_backup(self, operation_id: str) -> bool:
        return operation_id in self._backups

    def discard_backup(self, operation_id: str) -> bool:
        """Drop a retained backup once rollback is no longer wanted."""
        return self._backups.pop(operation_id, None) is not None

    def _keep_backup(self, operation_id: str, backup: _Backup) -> None:
        self._backups[operation_id] = backup
        while len(self._backups) > self.max_backups:
            evicted = next(iter(self._backups))
            del self._backups[evicted]
            logger.debug(f"Evicted backup of bulk operation {evicted}")

    def _restore(self, backup: _Backup) -> None:
        for (kind, record_id), prior in backup.records.items():
            if prior is None:
                if self.store.get(kind, record_id) is not None:
                    self.store.delete(kind, record_id)
            else:
                self.store.upsert(kind, prior)

    def _load(self, session_id: str) -> ScheduledSession:
        session = self.store.require("session", session_id)
        if not session.status.is_movable:
            raise _ItemRejected(f"Session '{session_id}' is {session.status.value} and cannot be changed")
        return session

    def _capture_windows(self, session: ScheduledSession, backup: _Backup) -> None:
        for window in self.store.windows_for(session.therapist_id):
            if window.specific_date == session.session_date:
                backup.capture("window", window.id, window)

    def _write(self, session: ScheduledSession, backup: _Backup, prior: ScheduledSession | None) -> ScheduledSession:
        expected = prior.version if prior is not None else 0
        stored = self.store.upsert("session", session, expected_version=expected)
        backup.capture("session", session.id, prior)
        return stored

    def _release(self, session: ScheduledSession, backup: _Backup) -> None:
        self._capture_windows(session, backup)
        self.availability.release(session)

    def _reserve(self, session: ScheduledSession, backup: _Backup) -> None:
        self._capture_windows(session, backup)
        self.availability.reserve(session)

    def _reschedule(
        self,
        session: ScheduledSession,
        params: BulkOperationParams,
        result: BulkOperationResult,
        backup: _Backup,
    ) -> bool:
        """Move a session to the first conflict-free slot in the new range.

        Slots on the session's own weekday and nearest its current start
        time are tried first.
        """
        therapist_id = params.new_therapist_id or session.therapist_id
        snapshot = ScheduleSnapshot.from_store(
            self.store, params.new_start_date, params.new_end_date, therapist_ids=[therapist_id]
        )
        duration = session.duration_minutes
        wanted_start = time_to_minutes(params.new_start_time) if params.new_start_time else session.start_minutes

        slots = []
        for day in daterange(params.new_start_date, params.new_end_date):
            for start in snapshot.slot_starts(therapist_id, day, duration, self.policy.slot_step_minutes):
                if params.new_start_time and start != wanted_start:
                    continue
                slots.append(
                    (day.weekday() != session.session_date.weekday(), abs(start - wanted_start), day, start)
                )
        slots.sort()

        for _, _, day, start in slots:
            candidate = SessionCandidate(
                therapist_id=therapist_id,
                session_date=day,
                start_time=minutes_to_time(start),
                end_time=minutes_to_time(start + duration),
                room_id=session.room_id,
                equipment_ids=tuple(session.equipment_ids),
                student_id=session.student_id,
                session_id=session.id,
            )
            if self.detector.check(candidate, snapshot):
                continue

            count = session.reschedule_count + 1
            new_session = replace(
                session,
                id=deterministic_id(session.id, "reschedule", count),
                session_number=f"{session.session_number}-R{count}",
                therapist_id=therapist_id,
                session_date=day,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                status=SessionStatus.SCHEDULED,
                has_conflicts=False,
                conflict_details=[],
                original_session_id=session.id,
                reschedule_count=count,
                reschedule_reason=params.reason or None,
                optimization_score=None,
                equipment_ids=list(session.equipment_ids),
                version=0,
            )
            prior = copy.deepcopy(session)
            session.status = SessionStatus.RESCHEDULED
            session.reschedule_reason = params.reason or None
            self._write(session, backup, prior)
            self._release(prior, backup)
            stored = self._write(new_session, backup, None)
            self._reserve(stored, backup)
            result.new_sessions.append(stored)
            return True

        result.item_errors[session.id] = (
            f"No conflict-free slot between {params.new_start_date} and {params.new_end_date}"
        )
        return False

    def _cancel(
        self,
        session: ScheduledSession,
        params: BulkOperationParams,
        result: BulkOperationResult,
        backup: _Backup,
    ) -> bool:
        prior = copy.deepcopy(session)
        session.status = SessionStatus.CANCELLED
        if params.reason:
            session.notes = f"{session.notes}\n{params.reason}".strip()
        self._write(session, backup, prior)
        self._release(prior, backup)
        return True

    def _modify(
        self,
        session: ScheduledSession,
        params: BulkOperationParams,
        result: BulkOperationResult,
        backup: _Backup,
    ) -> bool:
        """Change room, equipment, time, therapist, priority or notes.

        The change is committed only when it causes no high or critical
        conflict; milder conflicts are kept on the session.
        """
        changes: dict[str, Any] = {}
        if params.room_id is not None:
            changes["room_id"] = params.room_id
        if params.equipment_ids is not None:
            changes["equipment_ids"] = list(params.equipment_ids)
        if params.new_therapist_id:
            changes["therapist_id"] = params.new_therapist_id
        if params.new_start_time is not None:
            start = time_to_minutes(params.new_start_time)
            if start + session.duration_minutes >= MINUTES_PER_DAY:
                raise _ItemRejected(
                    f"Session '{session.id}' ({session.duration_minutes} min) cannot start at "
                    f"{format_time(params.new_start_time)} without running past midnight"
                )
            changes["start_time"] = minutes_to_time(start)
            changes["end_time"] = minutes_to_time(start + session.duration_minutes)
        if params.new_start_date is not None and params.new_start_date == params.new_end_date:
            changes["session_date"] = params.new_start_date
        if params.priority is not None:
            changes["priority"] = params.priority
        if params.notes is not None:
            changes["notes"] = params.notes

        modified = replace(session, **changes)
        moved = (modified.therapist_id, modified.session_date, modified.start_time) != (
            session.therapist_id,
            session.session_date,
            session.start_time,
        )
        snapshot = ScheduleSnapshot.from_store(
            self.store,
            modified.session_date,
            modified.session_date,
            therapist_ids=[modified.therapist_id],
        )
        conflicts = self.detector.check_session(modified, snapshot)
        worst = worst_severity(conflicts)
        if worst is not None and worst.is_blocking:
            result.conflicts.extend(conflicts)
            result.item_errors[session.id] = f"Change would cause a {worst.value} conflict"
            return False

        modified.conflict_details = conflicts
        modified.has_conflicts = bool(conflicts)
        if conflicts:
            result.conflicts.extend(conflicts)
            result.warnings.append(f"Session {session.id} modified with {len(conflicts)} minor conflict(s)")
        self._write(modified, backup, session)
        if moved:
            self._release(session, backup)
            self._reserve(modified, backup)
        return True
