"""Record store collaborator used by the scheduling engine."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import date
from typing import Any

from .exceptions import ConcurrencyConflictError, ResourceNotFoundError
from .models import (
    AvailabilityException,
    AvailabilityTemplate,
    AvailabilityWindow,
    Equipment,
    Room,
    ScheduledSession,
    Therapist,
)

logger = logging.getLogger(__name__)

# Record kinds and the model class stored under each
RECORD_TYPES: dict[str, type] = {
    "therapist": Therapist,
    "room": Room,
    "equipment": Equipment,
    "window": AvailabilityWindow,
    "template": AvailabilityTemplate,
    "exception": AvailabilityException,
    "session": ScheduledSession,
}

# Snapshot file section for each record kind
SECTION_NAMES = {
    "therapist": "therapists",
    "room": "rooms",
    "equipment": "equipment",
    "window": "windows",
    "template": "templates",
    "exception": "exceptions",
    "session": "sessions",
}


class RecordStore(ABC):
    """Keyed record storage with filtered queries and optimistic concurrency.

    Every record carries a ``version``. Passing ``expected_version`` to
    ``upsert``/``delete`` turns the write into a compare-and-set that raises
    ``ConcurrencyConflictError`` when the stored version differs. Without it
    writes are last-write-wins.
    """

    @abstractmethod
    def get(self, kind: str, record_id: str) -> Any | None:
        """Fetch a copy of one record, or None."""

    @abstractmethod
    def upsert(self, kind: str, record: Any, expected_version: int | None = None) -> Any:
        """Insert or replace a record; returns the stored copy with its new version."""

    @abstractmethod
    def delete(self, kind: str, record_id: str, expected_version: int | None = None) -> None:
        """Delete a record."""

    @abstractmethod
    def query(self, kind: str, predicate: Callable[[Any], bool] | None = None, **equals: Any) -> list:
        """Return copies of matching records ordered by id."""

    def require(self, kind: str, record_id: str) -> Any:
        """Fetch a record or raise ``ResourceNotFoundError``."""
        record = self.get(kind, record_id)
        if record is None:
            raise ResourceNotFoundError(kind, record_id)
        return record

    def windows_for(self, therapist_id: str) -> list[AvailabilityWindow]:
        return self.query("window", therapist_id=therapist_id)

    def exceptions_for(self, therapist_id: str, start: date, end: date) -> list[AvailabilityException]:
        return self.query(
            "exception",
            lambda e: e.start_date <= end and e.end_date >= start,
            therapist_id=therapist_id,
        )

    def sessions_between(
        self,
        start: date,
        end: date,
        therapist_id: str | None = None,
    ) -> list[ScheduledSession]:
        filters = {"therapist_id": therapist_id} if therapist_id else {}
        return self.query("session", lambda s: start <= s.session_date <= end, **filters)

    def therapist_ids(self) -> list[str]:
        """Active therapists, or every therapist that owns a window when none are registered."""
        therapists = self.query("therapist", is_active=True)
        if therapists:
            return [t.id for t in therapists]
        return sorted({w.therapist_id for w in self.query("window")})


class InMemoryRecordStore(RecordStore):
    """Thread-safe in-memory record store.

    Records are deep-copied on the way in and out so callers always work on
    a snapshot and cannot mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {kind: {} for kind in RECORD_TYPES}
        self._lock = threading.RLock()

    def _table(self, kind: str) -> dict[str, Any]:
        if kind not in self._records:
            raise KeyError(f"Unknown record kind '{kind}'")
        return self._records[kind]

    def _check_version(self, kind: str, record_id: str, expected_version: int | None) -> None:
        if expected_version is None:
            return
        current = self._table(kind).get(record_id)
        actual = current.version if current is not None else None
        if actual != expected_version and not (current is None and expected_version == 0):
            raise ConcurrencyConflictError(kind, record_id, expected_version, actual)

    def get(self, kind: str, record_id: str) -> Any | None:
        with self._lock:
            record = self._table(kind).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def upsert(self, kind: str, record: Any, expected_version: int | None = None) -> Any:
        with self._lock:
            self._check_version(kind, record.id, expected_version)
            current = self._table(kind).get(record.id)
            stored = copy.deepcopy(record)
            stored.version = (current.version if current is not None else 0) + 1
            self._table(kind)[record.id] = stored
            logger.debug(f"Stored {kind} {record.id} (version {stored.version})")
            return copy.deepcopy(stored)

    def delete(self, kind: str, record_id: str, expected_version: int | None = None) -> None:
        with self._lock:
            if record_id not in self._table(kind):
                raise ResourceNotFoundError(kind, record_id)
            self._check_version(kind, record_id, expected_version)
            del self._table(kind)[record_id]
            logger.debug(f"Deleted {kind} {record_id}")

    def query(self, kind: str, predicate: Callable[[Any], bool] | None = None, **equals: Any) -> list:
        with self._lock:
            matches = []
            for record_id in sorted(self._table(kind)):
                record = self._table(kind)[record_id]
                if any(getattr(record, attr) != value for attr, value in equals.items()):
                    continue
                if predicate is not None and not predicate(record):
                    continue
                matches.append(copy.deepcopy(record))
            return matches

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Serialize every record, grouped by snapshot section."""
        with self._lock:
            return {
                SECTION_NAMES[kind]: [self._table(kind)[rid].to_dict() for rid in sorted(self._table(kind))]
                for kind in RECORD_TYPES
            }

    @classmethod
    def from_dict(cls, data: dict[str, list[dict[str, Any]]]) -> "InMemoryRecordStore":
        """Load records from the structure produced by ``to_dict``.

        Stored versions are preserved so optimistic writes keep working
        across save/load cycles.
        """
        store = cls()
        for kind, model in RECORD_TYPES.items():
            for item in data.get(SECTION_NAMES[kind], []):
                record = model.from_dict(item)
                store._records[kind][record.id] = record
        return store
