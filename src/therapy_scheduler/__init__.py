"""Therapy Scheduler - automated session scheduling for therapy programs.

This package generates recurring session schedules from treatment demands,
detects conflicts between therapists, rooms, equipment and students,
optimizes existing schedules and reports utilization metrics.

Example usage:
    from therapy_scheduler import InMemoryRecordStore, SchedulingEngine
    from therapy_scheduler.exporter import load_request, load_snapshot

    store = load_snapshot("snapshot.json")
    engine = SchedulingEngine(store)
    result = engine.generate_schedule(load_request("request.json"), commit=True)

    print(f"Generated: {len(result.generated_sessions)}")
    print(f"Unscheduled: {result.unscheduled_sessions}")

    for conflict in result.conflicts:
        print(f"{conflict.severity.value} | {conflict.description.get('ar')}")
"""

from .availability import AvailabilityStore, resolve_day, resolve_windows
from .bulk import BulkOperationsCoordinator
from .config import ConfigLoader, SchedulingPolicy, SeverityConfig
from .conflicts import ConflictDetector
from .engine import SchedulingEngine
from .exceptions import (
    CapacityViolationError,
    ConcurrencyConflictError,
    InvalidInputError,
    InvalidWindowError,
    ResourceNotFoundError,
    SchedulingError,
)
from .generator import ScheduleGenerator
from .metrics import MetricsCalculator, evaluate_targets
from .models import (
    AvailabilityException,
    AvailabilityTemplate,
    AvailabilityWindow,
    BilingualText,
    BulkOperationParams,
    BulkOperationResult,
    BulkOperationType,
    ConflictSeverity,
    ConflictType,
    OptimizationConfig,
    OptimizationResult,
    OptimizationStrategy,
    ScheduleConflict,
    ScheduledSession,
    SchedulingMetrics,
    SchedulingRequest,
    SchedulingResult,
    SchedulingSuggestion,
    SessionCandidate,
    SessionStatus,
    TimeSlot,
)
from .notifier import LoggingNotifier, NotificationEvent, Notifier
from .optimizer import ScheduleOptimizer
from .snapshot import ScheduleSnapshot
from .store import InMemoryRecordStore, RecordStore
from .templates import TemplateManager

__version__ = "0.1.0"

__all__ = [
    # Engine
    "SchedulingEngine",
    "ScheduleGenerator",
    "ScheduleOptimizer",
    "ConflictDetector",
    "BulkOperationsCoordinator",
    "MetricsCalculator",
    "evaluate_targets",
    # Availability
    "AvailabilityStore",
    "TemplateManager",
    "resolve_day",
    "resolve_windows",
    # Storage
    "RecordStore",
    "InMemoryRecordStore",
    "ScheduleSnapshot",
    # Configuration
    "ConfigLoader",
    "SchedulingPolicy",
    "SeverityConfig",
    # Notifications
    "Notifier",
    "LoggingNotifier",
    "NotificationEvent",
    # Models
    "AvailabilityWindow",
    "AvailabilityTemplate",
    "AvailabilityException",
    "BilingualText",
    "TimeSlot",
    "ScheduledSession",
    "SessionCandidate",
    "SessionStatus",
    "SchedulingRequest",
    "SchedulingResult",
    "SchedulingSuggestion",
    "ScheduleConflict",
    "ConflictType",
    "ConflictSeverity",
    "OptimizationConfig",
    "OptimizationResult",
    "OptimizationStrategy",
    "BulkOperationType",
    "BulkOperationParams",
    "BulkOperationResult",
    "SchedulingMetrics",
    # Exceptions
    "SchedulingError",
    "InvalidInputError",
    "InvalidWindowError",
    "CapacityViolationError",
    "ResourceNotFoundError",
    "ConcurrencyConflictError",
]
