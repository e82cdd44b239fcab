"""Per-therapist critical sections."""

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class TherapistLockManager:
    """Exclusive lock per therapist id.

    Allocation is read-then-write, so two writers touching the same therapist
    must not interleave between snapshot and commit. Locks for several
    therapists are always taken in sorted order so overlapping callers cannot
    deadlock. Calls for disjoint therapists proceed in parallel.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, therapist_id: str) -> threading.Lock:
        with self._guard:
            if therapist_id not in self._locks:
                self._locks[therapist_id] = threading.Lock()
            return self._locks[therapist_id]

    @contextmanager
    def hold(self, therapist_ids: Iterable[str]) -> Iterator[list[str]]:
        """Hold the locks of every given therapist for the duration of the block."""
        ordered = sorted(set(therapist_ids))
        acquired: list[threading.Lock] = []
        try:
            for therapist_id in ordered:
                lock = self._lock_for(therapist_id)
                lock.acquire()
                acquired.append(lock)
            logger.debug(f"Holding therapist locks: {', '.join(ordered)}")
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, therapist_id: str) -> bool:
        return self._lock_for(therapist_id).locked()
