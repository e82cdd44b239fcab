"""Custom exceptions for the scheduling engine."""


class SchedulingError(Exception):
    """Base exception for scheduling engine errors."""

    pass


class InvalidInputError(SchedulingError):
    """Request or record failed validation before any computation."""

    def __init__(self, message: str, field: str | None = None, errors: list[str] | None = None):
        self.field = field
        self.errors = errors or [message]
        prefix = f"Invalid {field}" if field else "Invalid input"
        super().__init__(f"{prefix}: {message}")


class InvalidWindowError(InvalidInputError):
    """Availability window has an impossible shape."""

    def __init__(self, window_id: str, reason: str):
        self.window_id = window_id
        self.reason = reason
        super().__init__(f"window '{window_id}' {reason}", field="availability window")


class CapacityViolationError(SchedulingError):
    """Capacity would fall below existing bookings, or bookings would exceed capacity."""

    def __init__(self, window_id: str, capacity: int, bookings: int):
        self.window_id = window_id
        self.capacity = capacity
        self.bookings = bookings
        super().__init__(
            f"Window '{window_id}' capacity {capacity} cannot hold {bookings} booking(s)"
        )


class ResourceNotFoundError(SchedulingError):
    """Referenced therapist, room, equipment, template or session does not exist."""

    def __init__(self, kind: str, resource_id: str):
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"{kind.capitalize()} '{resource_id}' not found")


class ConcurrencyConflictError(SchedulingError):
    """Optimistic-concurrency write rejected because the caller's snapshot is stale."""

    def __init__(
        self,
        kind: str,
        record_id: str,
        expected_version: int,
        actual_version: int | None,
    ):
        self.kind = kind
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stale write to {kind} '{record_id}': expected version {expected_version}, "
            f"store has {actual_version}. Refetch and retry."
        )
