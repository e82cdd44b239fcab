"""Data models for the therapy scheduling engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from .constants import Locale
from .exceptions import InvalidInputError
from .utils import day_name_to_index, format_time, parse_date, parse_time, time_to_minutes


class SessionCategory(str, Enum):
    """Kind of therapy session."""

    THERAPY = "therapy"
    ASSESSMENT = "assessment"
    CONSULTATION = "consultation"
    GROUP_SESSION = "group_session"
    EVALUATION = "evaluation"


class SessionStatus(str, Enum):
    """Lifecycle status of a scheduled session."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    @property
    def is_active(self) -> bool:
        """Whether the session still occupies its therapist, room and equipment."""
        return self not in (
            SessionStatus.CANCELLED,
            SessionStatus.NO_SHOW,
            SessionStatus.RESCHEDULED,
        )

    @property
    def is_movable(self) -> bool:
        """Whether the generator, optimizer or bulk coordinator may change it."""
        return self in (SessionStatus.SCHEDULED, SessionStatus.CONFIRMED)


class ConflictType(str, Enum):
    """Category of a detected scheduling conflict."""

    THERAPIST_DOUBLE_BOOKING = "therapist_double_booking"
    ROOM_UNAVAILABLE = "room_unavailable"
    EQUIPMENT_CONFLICT = "equipment_conflict"
    STUDENT_UNAVAILABLE = "student_unavailable"
    TIME_CONSTRAINT = "time_constraint"


class ConflictSeverity(str, Enum):
    """Ordinal conflict severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_blocking(self) -> bool:
        """High and critical conflicts are never resolved automatically."""
        return self.rank >= _SEVERITY_RANK[ConflictSeverity.HIGH]


_SEVERITY_RANK = {
    ConflictSeverity.LOW: 1,
    ConflictSeverity.MEDIUM: 2,
    ConflictSeverity.HIGH: 3,
    ConflictSeverity.CRITICAL: 4,
}


class ResolutionStatus(str, Enum):
    """Resolution state of a conflict."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    IGNORED = "ignored"


class BulkOperationType(str, Enum):
    """Operations supported by the bulk coordinator."""

    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    MODIFY = "modify"


class OptimizationStrategy(str, Enum):
    """Search strategy used by the schedule optimizer."""

    HILL_CLIMB = "hill_climb"
    CP_SAT = "cp_sat"


def _weekday(value: int | str) -> int:
    """Accept a 0-based weekday or a day name such as ``"wednesday"``."""
    if isinstance(value, int):
        return value
    index = day_name_to_index(value)
    if index is None:
        raise ValueError(f"unknown day name: {value!r}")
    return index


def _opt_date(value: Any) -> date | None:
    return parse_date(value) if value else None


def _opt_time(value: Any) -> time | None:
    return parse_time(value) if value else None


def _opt_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class BilingualText:
    """Text carried in English and Arabic."""

    en: str
    ar: str = ""

    def get(self, locale: Locale | str = Locale.EN) -> str:
        """Get the text for a locale, falling back to English."""
        if Locale(locale) == Locale.AR and self.ar:
            return self.ar
        return self.en

    def to_dict(self) -> dict[str, str]:
        return {"en": self.en, "ar": self.ar}

    @classmethod
    def from_value(cls, value: Any) -> "BilingualText":
        """Create from a ``{"en", "ar"}`` dict or a plain string."""
        if isinstance(value, BilingualText):
            return value
        if isinstance(value, dict):
            return cls(en=value.get("en", ""), ar=value.get("ar", ""))
        return cls(en=str(value or ""))


@dataclass(frozen=True)
class TimeSlot:
    """A same-day time range ``[start_time, end_time)``."""

    start_time: time
    end_time: time

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def contains(self, start: int, end: int) -> bool:
        """Check whether a minute range lies fully inside this slot."""
        return self.start_minutes <= start and end <= self.end_minutes

    def overlaps(self, start: int, end: int) -> bool:
        """Check whether a minute range overlaps this slot."""
        return self.start_minutes < end and self.end_minutes > start

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "duration_minutes": self.duration_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeSlot":
        return cls(start_time=parse_time(data["start_time"]), end_time=parse_time(data["end_time"]))


@dataclass
class Therapist:
    """A bookable therapist."""

    id: str
    name: BilingualText
    is_active: bool = True
    max_sessions_per_day: int | None = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name.to_dict(),
            "is_active": self.is_active,
            "max_sessions_per_day": self.max_sessions_per_day,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Therapist":
        return cls(
            id=data["id"],
            name=BilingualText.from_value(data.get("name", data["id"])),
            is_active=data.get("is_active", True),
            max_sessions_per_day=data.get("max_sessions_per_day"),
            version=data.get("version", 0),
        )


@dataclass
class Room:
    """A therapy room."""

    id: str
    name: str
    room_type: str = "therapy"
    capacity: int = 1
    is_active: bool = True
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "room_type": self.room_type,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Room":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            room_type=data.get("room_type", "therapy"),
            capacity=data.get("capacity", 1),
            is_active=data.get("is_active", True),
            version=data.get("version", 0),
        )


@dataclass
class Equipment:
    """A piece of bookable equipment."""

    id: str
    name: str
    equipment_type: str = ""
    is_active: bool = True
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "equipment_type": self.equipment_type,
            "is_active": self.is_active,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Equipment":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            equipment_type=data.get("equipment_type", ""),
            is_active=data.get("is_active", True),
            version=data.get("version", 0),
        )


@dataclass
class AvailabilityWindow:
    """A recurring or date-specific block during which a therapist can be booked."""

    id: str
    therapist_id: str
    start_time: time
    end_time: time
    day_of_week: int | None = None
    specific_date: date | None = None
    is_recurring: bool = True
    max_sessions_per_slot: int = 1
    current_bookings: int = 0
    is_available: bool = True
    is_time_off: bool = False
    time_off_reason: str | None = None
    notes: str = ""
    version: int = 0

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def available_slots(self) -> int:
        if self.is_time_off or not self.is_available:
            return 0
        return max(0, self.max_sessions_per_slot - self.current_bookings)

    @property
    def utilization_rate(self) -> float:
        return 100.0 * self.current_bookings / self.max_sessions_per_slot

    def applies_to(self, day: date) -> bool:
        """Check whether this window's definition covers a calendar date."""
        if self.specific_date is not None:
            return self.specific_date == day
        return self.day_of_week == day.weekday()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "therapist_id": self.therapist_id,
            "day_of_week": self.day_of_week,
            "specific_date": self.specific_date.isoformat() if self.specific_date else None,
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "is_recurring": self.is_recurring,
            "max_sessions_per_slot": self.max_sessions_per_slot,
            "current_bookings": self.current_bookings,
            "is_available": self.is_available,
            "is_time_off": self.is_time_off,
            "time_off_reason": self.time_off_reason,
            "notes": self.notes,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AvailabilityWindow":
        specific = _opt_date(data.get("specific_date"))
        return cls(
            id=data["id"],
            therapist_id=data["therapist_id"],
            start_time=parse_time(data["start_time"]),
            end_time=parse_time(data["end_time"]),
            day_of_week=data.get("day_of_week"),
            specific_date=specific,
            is_recurring=data.get("is_recurring", specific is None),
            max_sessions_per_slot=data.get("max_sessions_per_slot", 1),
            current_bookings=data.get("current_bookings", 0),
            is_available=data.get("is_available", True),
            is_time_off=data.get("is_time_off", False),
            time_off_reason=data.get("time_off_reason"),
            notes=data.get("notes", ""),
            version=data.get("version", 0),
        )


@dataclass(frozen=True)
class TemplateSlot:
    """One weekly ``(day_of_week, start, end)`` entry of an availability template."""

    day_of_week: int
    start_time: time
    end_time: time
    max_sessions_per_slot: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "day_of_week": self.day_of_week,
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "max_sessions_per_slot": self.max_sessions_per_slot,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplateSlot":
        return cls(
            day_of_week=_weekday(data["day_of_week"]),
            start_time=parse_time(data["start_time"]),
            end_time=parse_time(data["end_time"]),
            max_sessions_per_slot=data.get("max_sessions_per_slot", 1),
        )


@dataclass
class AvailabilityTemplate:
    """A named, reusable weekly availability pattern."""

    id: str
    name: BilingualText
    slots: list[TemplateSlot] = field(default_factory=list)
    therapist_id: str | None = None
    description: BilingualText | None = None
    is_active: bool = True
    usage_count: int = 0
    last_applied: date | None = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name.to_dict(),
            "description": self.description.to_dict() if self.description else None,
            "therapist_id": self.therapist_id,
            "slots": [s.to_dict() for s in self.slots],
            "is_active": self.is_active,
            "usage_count": self.usage_count,
            "last_applied": self.last_applied.isoformat() if self.last_applied else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AvailabilityTemplate":
        description = data.get("description")
        return cls(
            id=data["id"],
            name=BilingualText.from_value(data.get("name", data["id"])),
            slots=[TemplateSlot.from_dict(s) for s in data.get("slots", [])],
            therapist_id=data.get("therapist_id"),
            description=BilingualText.from_value(description) if description else None,
            is_active=data.get("is_active", True),
            usage_count=data.get("usage_count", 0),
            last_applied=_opt_date(data.get("last_applied")),
            version=data.get("version", 0),
        )


@dataclass
class AvailabilityException:
    """A date-range override such as vacation or modified hours.

    With ``is_available=False`` the exception masks ``[start_time, end_time)``
    (the whole day when no times are given). With ``is_available=True`` the
    therapist is bookable only inside ``alternative_times`` on those dates.
    """

    id: str
    therapist_id: str
    start_date: date
    end_date: date
    start_time: time | None = None
    end_time: time | None = None
    is_available: bool = False
    reason: BilingualText = field(default_factory=lambda: BilingualText(""))
    alternative_times: list[TimeSlot] = field(default_factory=list)
    version: int = 0

    @property
    def is_all_day(self) -> bool:
        return self.start_time is None or self.end_time is None

    def applies_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def masked_range(self) -> tuple[int, int]:
        """Minute range this exception masks on each covered date."""
        if self.is_all_day:
            return 0, 24 * 60
        return time_to_minutes(self.start_time), time_to_minutes(self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "therapist_id": self.therapist_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "start_time": format_time(self.start_time) if self.start_time else None,
            "end_time": format_time(self.end_time) if self.end_time else None,
            "is_available": self.is_available,
            "reason": self.reason.to_dict(),
            "alternative_times": [t.to_dict() for t in self.alternative_times],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AvailabilityException":
        start = parse_date(data["start_date"])
        return cls(
            id=data["id"],
            therapist_id=data["therapist_id"],
            start_date=start,
            end_date=_opt_date(data.get("end_date")) or start,
            start_time=_opt_time(data.get("start_time")),
            end_time=_opt_time(data.get("end_time")),
            is_available=data.get("is_available", False),
            reason=BilingualText.from_value(data.get("reason", "")),
            alternative_times=[TimeSlot.from_dict(t) for t in data.get("alternative_times", [])],
            version=data.get("version", 0),
        )


@dataclass(frozen=True)
class ResolvedWindow:
    """An availability window resolved onto one calendar date."""

    therapist_id: str
    day: date
    start_minutes: int
    end_minutes: int
    window_id: str | None
    capacity: int = 1
    booked: int = 0
    is_time_off: bool = False
    is_available: bool = True
    source: str = "recurring"
    reason: str = ""

    @property
    def bookable(self) -> bool:
        return self.is_available and not self.is_time_off

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def covers(self, start: int, end: int) -> bool:
        return self.start_minutes <= start and end <= self.end_minutes


@dataclass(frozen=True)
class ResourceAvailability:
    """Resource availability snapshot attached to a suggestion."""

    therapist_available: bool = True
    room_available: bool = True
    equipment_available: bool = True
    student_available: bool = True
    conflicts: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "therapist_available": self.therapist_available,
            "room_available": self.room_available,
            "equipment_available": self.equipment_available,
            "student_available": self.student_available,
            "conflicts": list(self.conflicts),
        }


@dataclass
class SchedulingSuggestion:
    """A ranked alternative placement."""

    session_date: date
    start_time: time
    end_time: time
    therapist_id: str
    confidence_score: float
    reasons: list[str] = field(default_factory=list)
    trade_offs: list[str] = field(default_factory=list)
    resource_availability: ResourceAvailability = field(default_factory=ResourceAvailability)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.session_date.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "therapist_id": self.therapist_id,
            "confidence_score": round(self.confidence_score, 1),
            "reasons": self.reasons,
            "trade_offs": self.trade_offs,
            "resource_availability": self.resource_availability.to_dict(),
        }


@dataclass
class ScheduleConflict:
    """A collision between a session (or template window) and another commitment."""

    id: str
    conflict_type: ConflictType
    severity: ConflictSeverity
    description: BilingualText
    primary_session_id: str | None = None
    conflicting_session_id: str | None = None
    affected_resources: list[str] = field(default_factory=list)
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    suggested_alternatives: list[SchedulingSuggestion] = field(default_factory=list)
    conflict_date: date | None = None
    window_id: str | None = None
    rule: str = ""
    detected_at: datetime | None = field(default=None, compare=False)
    resolved_at: datetime | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conflict_type": self.conflict_type.value,
            "severity": self.severity.value,
            "description": self.description.to_dict(),
            "primary_session_id": self.primary_session_id,
            "conflicting_session_id": self.conflicting_session_id,
            "affected_resources": self.affected_resources,
            "resolution_status": self.resolution_status.value,
            "suggested_alternatives": [s.to_dict() for s in self.suggested_alternatives],
            "conflict_date": self.conflict_date.isoformat() if self.conflict_date else None,
            "window_id": self.window_id,
            "rule": self.rule,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduleConflict":
        return cls(
            id=data["id"],
            conflict_type=ConflictType(data["conflict_type"]),
            severity=ConflictSeverity(data["severity"]),
            description=BilingualText.from_value(data.get("description", "")),
            primary_session_id=data.get("primary_session_id"),
            conflicting_session_id=data.get("conflicting_session_id"),
            affected_resources=data.get("affected_resources", []),
            resolution_status=ResolutionStatus(data.get("resolution_status", "pending")),
            conflict_date=_opt_date(data.get("conflict_date")),
            window_id=data.get("window_id"),
            rule=data.get("rule", ""),
            detected_at=_opt_datetime(data.get("detected_at")),
            resolved_at=_opt_datetime(data.get("resolved_at")),
        )


@dataclass
class ScheduledSession:
    """One concrete therapy session instance."""

    id: str
    session_number: str
    demand_ref: str
    therapist_id: str
    session_date: date
    start_time: time
    end_time: time
    duration_minutes: int = 0
    room_id: str | None = None
    equipment_ids: list[str] = field(default_factory=list)
    student_id: str | None = None
    category: SessionCategory = SessionCategory.THERAPY
    priority: int = 2
    status: SessionStatus = SessionStatus.SCHEDULED
    has_conflicts: bool = False
    conflict_details: list[ScheduleConflict] = field(default_factory=list)
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    original_session_id: str | None = None
    reschedule_count: int = 0
    reschedule_reason: str | None = None
    optimization_score: float | None = None
    is_billable: bool = True
    notes: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        span = self.end_minutes - self.start_minutes
        if not self.duration_minutes:
            self.duration_minutes = span
        elif self.duration_minutes != span:
            raise InvalidInputError(
                f"session '{self.id}' runs {span} minutes but duration_minutes is {self.duration_minutes}",
                field="session",
            )

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def max_conflict_severity(self) -> ConflictSeverity | None:
        if not self.conflict_details:
            return None
        return max((c.severity for c in self.conflict_details), key=lambda s: s.rank)

    def overlaps(self, other: "ScheduledSession") -> bool:
        """Same date and overlapping ``[start, end)``."""
        return (
            self.session_date == other.session_date
            and self.start_minutes < other.end_minutes
            and self.end_minutes > other.start_minutes
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_number": self.session_number,
            "demand_ref": self.demand_ref,
            "therapist_id": self.therapist_id,
            "session_date": self.session_date.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "duration_minutes": self.duration_minutes,
            "room_id": self.room_id,
            "equipment_ids": self.equipment_ids,
            "student_id": self.student_id,
            "category": self.category.value,
            "priority": self.priority,
            "status": self.status.value,
            "has_conflicts": self.has_conflicts,
            "conflict_details": [c.to_dict() for c in self.conflict_details],
            "resolution_status": self.resolution_status.value,
            "original_session_id": self.original_session_id,
            "reschedule_count": self.reschedule_count,
            "reschedule_reason": self.reschedule_reason,
            "optimization_score": self.optimization_score,
            "is_billable": self.is_billable,
            "notes": self.notes,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScheduledSession":
        return cls(
            id=data["id"],
            session_number=data.get("session_number", data["id"]),
            demand_ref=data.get("demand_ref", ""),
            therapist_id=data["therapist_id"],
            session_date=parse_date(data["session_date"]),
            start_time=parse_time(data["start_time"]),
            end_time=parse_time(data["end_time"]),
            duration_minutes=data.get("duration_minutes", 0),
            room_id=data.get("room_id"),
            equipment_ids=data.get("equipment_ids", []),
            student_id=data.get("student_id"),
            category=SessionCategory(data.get("category", "therapy")),
            priority=data.get("priority", 2),
            status=SessionStatus(data.get("status", "scheduled")),
            has_conflicts=data.get("has_conflicts", False),
            conflict_details=[ScheduleConflict.from_dict(c) for c in data.get("conflict_details", [])],
            resolution_status=ResolutionStatus(data.get("resolution_status", "pending")),
            original_session_id=data.get("original_session_id"),
            reschedule_count=data.get("reschedule_count", 0),
            reschedule_reason=data.get("reschedule_reason"),
            optimization_score=data.get("optimization_score"),
            is_billable=data.get("is_billable", True),
            notes=data.get("notes", ""),
            version=data.get("version", 0),
        )


@dataclass(frozen=True)
class SessionCandidate:
    """A proposed placement passed to the conflict detector."""

    therapist_id: str
    session_date: date
    start_time: time
    end_time: time
    room_id: str | None = None
    equipment_ids: tuple[str, ...] = ()
    student_id: str | None = None
    session_id: str | None = None
    avoid_back_to_back: bool = False

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @classmethod
    def from_session(cls, session: ScheduledSession, **overrides: Any) -> "SessionCandidate":
        """Build a candidate describing an existing session's placement."""
        values: dict[str, Any] = {
            "therapist_id": session.therapist_id,
            "session_date": session.session_date,
            "start_time": session.start_time,
            "end_time": session.end_time,
            "room_id": session.room_id,
            "equipment_ids": tuple(session.equipment_ids),
            "student_id": session.student_id,
            "session_id": session.id,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class SchedulingRequest:
    """What a demand needs from the schedule generator."""

    demand_ref: str
    start_date: date
    end_date: date
    total_sessions: int
    sessions_per_week: int
    session_duration: int
    preferred_therapist_id: str | None = None
    preferred_times: list[TimeSlot] = field(default_factory=list)
    avoid_times: list[TimeSlot] = field(default_factory=list)
    preferred_days: list[int] = field(default_factory=list)
    avoid_days: list[int] = field(default_factory=list)
    priority: int = 2
    flexibility_score: int = 50
    requires_consecutive_sessions: bool = False
    max_gap_between_sessions: int | None = None
    category: SessionCategory = SessionCategory.THERAPY
    required_room_type: str | None = None
    required_equipment: list[str] = field(default_factory=list)
    student_id: str | None = None
    avoid_back_to_back: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "demand_ref": self.demand_ref,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_sessions": self.total_sessions,
            "sessions_per_week": self.sessions_per_week,
            "session_duration": self.session_duration,
            "preferred_therapist_id": self.preferred_therapist_id,
            "preferred_times": [t.to_dict() for t in self.preferred_times],
            "avoid_times": [t.to_dict() for t in self.avoid_times],
            "preferred_days": self.preferred_days,
            "avoid_days": self.avoid_days,
            "priority": self.priority,
            "flexibility_score": self.flexibility_score,
            "requires_consecutive_sessions": self.requires_consecutive_sessions,
            "max_gap_between_sessions": self.max_gap_between_sessions,
            "category": self.category.value,
            "required_room_type": self.required_room_type,
            "required_equipment": self.required_equipment,
            "student_id": self.student_id,
            "avoid_back_to_back": self.avoid_back_to_back,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchedulingRequest":
        return cls(
            demand_ref=data["demand_ref"],
            start_date=parse_date(data["start_date"]),
            end_date=parse_date(data["end_date"]),
            total_sessions=data["total_sessions"],
            sessions_per_week=data["sessions_per_week"],
            session_duration=data["session_duration"],
            preferred_therapist_id=data.get("preferred_therapist_id"),
            preferred_times=[TimeSlot.from_dict(t) for t in data.get("preferred_times", [])],
            avoid_times=[TimeSlot.from_dict(t) for t in data.get("avoid_times", [])],
            preferred_days=[_weekday(d) for d in data.get("preferred_days", [])],
            avoid_days=[_weekday(d) for d in data.get("avoid_days", [])],
            priority=data.get("priority", 2),
            flexibility_score=data.get("flexibility_score", 50),
            requires_consecutive_sessions=data.get("requires_consecutive_sessions", False),
            max_gap_between_sessions=data.get("max_gap_between_sessions"),
            category=SessionCategory(data.get("category", "therapy")),
            required_room_type=data.get("required_room_type"),
            required_equipment=data.get("required_equipment", []),
            student_id=data.get("student_id"),
            avoid_back_to_back=data.get("avoid_back_to_back", False),
        )


@dataclass
class Shortfall:
    """Demand that could not be placed in one week."""

    week_start: date
    week_end: date
    missing_sessions: int
    reason: str
    suggestions: list[SchedulingSuggestion] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "week_start": self.week_start.isoformat(),
            "week_end": self.week_end.isoformat(),
            "missing_sessions": self.missing_sessions,
            "reason": self.reason,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


@dataclass
class SchedulingResult:
    """Output of the schedule generator."""

    demand_ref: str
    generated_sessions: list[ScheduledSession] = field(default_factory=list)
    conflicts: list[ScheduleConflict] = field(default_factory=list)
    shortfalls: list[Shortfall] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unscheduled_sessions: int = 0
    optimization_score: float = 0.0
    preference_match_score: float = 0.0
    therapist_utilization: float = 0.0
    algorithm_used: str = "greedy_backtrack"
    generation_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.unscheduled_sessions == 0

    @property
    def suggestions(self) -> list[SchedulingSuggestion]:
        return [s for shortfall in self.shortfalls for s in shortfall.suggestions]

    @property
    def total_conflicts(self) -> int:
        return len(self.conflicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "demand_ref": self.demand_ref,
            "success": self.success,
            "generated_sessions": [s.to_dict() for s in self.generated_sessions],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "shortfalls": [s.to_dict() for s in self.shortfalls],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "warnings": self.warnings,
            "unscheduled_sessions": self.unscheduled_sessions,
            "total_conflicts": self.total_conflicts,
            "optimization_score": round(self.optimization_score, 2),
            "preference_match_score": round(self.preference_match_score, 2),
            "therapist_utilization": round(self.therapist_utilization, 2),
            "algorithm_used": self.algorithm_used,
            "generation_time_ms": round(self.generation_time_ms, 2),
        }


@dataclass
class OptimizationConfig:
    """Weights and limits for the schedule optimizer."""

    utilization_weight: float = 0.4
    preference_weight: float = 0.35
    gap_weight: float = 0.25
    max_iterations: int = 50
    max_gap_between_sessions: int = 120
    preferred_times: dict[str, list[TimeSlot]] = field(default_factory=dict)
    strategy: OptimizationStrategy = OptimizationStrategy.HILL_CLIMB
    time_budget_seconds: float = 10.0
    period_start: date | None = None
    period_end: date | None = None

    @property
    def weights(self) -> dict[str, float]:
        return {
            "utilization": self.utilization_weight,
            "preference": self.preference_weight,
            "gap": self.gap_weight,
        }


@dataclass(frozen=True)
class Relocation:
    """A session move accepted by the optimizer."""

    session_id: str
    from_date: date
    from_start: time
    to_date: date
    to_start: time
    score_gain: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "from": f"{self.from_date.isoformat()} {format_time(self.from_start)}",
            "to": f"{self.to_date.isoformat()} {format_time(self.to_start)}",
            "score_gain": round(self.score_gain, 3),
        }


@dataclass
class OptimizationResult:
    """Output of the schedule optimizer."""

    sessions: list[ScheduledSession] = field(default_factory=list)
    initial_score: float = 0.0
    final_score: float = 0.0
    relocations: list[Relocation] = field(default_factory=list)
    iterations: int = 0
    converged: bool = True
    strategy: OptimizationStrategy = OptimizationStrategy.HILL_CLIMB
    optimization_time_ms: float = 0.0

    @property
    def improvement_percentage(self) -> float:
        if self.initial_score <= 0:
            return 0.0 if self.final_score <= 0 else 100.0
        return 100.0 * (self.final_score - self.initial_score) / self.initial_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": [s.to_dict() for s in self.sessions],
            "initial_score": round(self.initial_score, 2),
            "final_score": round(self.final_score, 2),
            "improvement_percentage": round(self.improvement_percentage, 2),
            "relocations": [r.to_dict() for r in self.relocations],
            "iterations": self.iterations,
            "converged": self.converged,
            "strategy": self.strategy.value,
            "optimization_time_ms": round(self.optimization_time_ms, 2),
        }


@dataclass
class BulkOperationParams:
    """Parameters for a bulk reschedule, cancel or modify."""

    reason: str = ""
    new_start_date: date | None = None
    new_end_date: date | None = None
    new_therapist_id: str | None = None
    new_start_time: time | None = None
    room_id: str | None = None
    equipment_ids: list[str] | None = None
    priority: int | None = None
    notes: str | None = None
    batch_size: int = 100
    create_backup: bool = True


@dataclass
class BulkOperationResult:
    """Per-item outcome of a bulk operation."""

    operation_id: str
    operation: BulkOperationType
    total_requested: int
    successful_session_ids: list[str] = field(default_factory=list)
    failed_session_ids: list[str] = field(default_factory=list)
    conflict_session_ids: list[str] = field(default_factory=list)
    new_sessions: list[ScheduledSession] = field(default_factory=list)
    conflicts: list[ScheduleConflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    item_errors: dict[str, str] = field(default_factory=dict)
    processing_time_ms: float = 0.0
    rollback_available: bool = False

    @property
    def successful_operations(self) -> int:
        return len(self.successful_session_ids)

    @property
    def failed_operations(self) -> int:
        return len(self.failed_session_ids) + len(self.conflict_session_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation": self.operation.value,
            "total_requested": self.total_requested,
            "successful_operations": self.successful_operations,
            "failed_operations": self.failed_operations,
            "successful_session_ids": self.successful_session_ids,
            "failed_session_ids": self.failed_session_ids,
            "conflict_session_ids": self.conflict_session_ids,
            "new_sessions": [s.to_dict() for s in self.new_sessions],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": self.warnings,
            "item_errors": self.item_errors,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "rollback_available": self.rollback_available,
        }


@dataclass
class TemplateApplication:
    """Result of instantiating a template onto a therapist calendar."""

    template_id: str
    therapist_id: str
    created_windows: list[AvailabilityWindow] = field(default_factory=list)
    conflicts: list[ScheduleConflict] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return len(self.created_windows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "template_id": self.template_id,
            "therapist_id": self.therapist_id,
            "applied": self.applied,
            "created_windows": [w.to_dict() for w in self.created_windows],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


@dataclass
class SchedulingMetrics:
    """Utilization, conflict and quality metrics for a period."""

    period_start: date
    period_end: date
    therapist_utilization: dict[str, float] = field(default_factory=dict)
    room_utilization: dict[str, float] = field(default_factory=dict)
    equipment_utilization: dict[str, float] = field(default_factory=dict)
    total_sessions: int = 0
    total_conflicts: int = 0
    conflicts_by_type: dict[str, int] = field(default_factory=dict)
    conflicts_by_severity: dict[str, int] = field(default_factory=dict)
    average_resolution_time: float = 0.0
    schedule_optimization_score: float = 0.0
    average_gap_between_sessions: float = 0.0
    back_to_back_session_percentage: float = 0.0
    reschedule_rate: float = 0.0
    no_show_rate: float = 0.0
    cancellation_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "therapist_utilization": self.therapist_utilization,
            "room_utilization": self.room_utilization,
            "equipment_utilization": self.equipment_utilization,
            "total_sessions": self.total_sessions,
            "total_conflicts": self.total_conflicts,
            "conflicts_by_type": self.conflicts_by_type,
            "conflicts_by_severity": self.conflicts_by_severity,
            "average_resolution_time": round(self.average_resolution_time, 2),
            "schedule_optimization_score": round(self.schedule_optimization_score, 2),
            "average_gap_between_sessions": round(self.average_gap_between_sessions, 2),
            "back_to_back_session_percentage": round(self.back_to_back_session_percentage, 2),
            "reschedule_rate": round(self.reschedule_rate, 2),
            "no_show_rate": round(self.no_show_rate, 2),
            "cancellation_rate": round(self.cancellation_rate, 2),
        }


@dataclass(frozen=True)
class PerformanceTarget:
    """A metric compared against its target value."""

    metric_name: str
    target_value: float
    current_value: float
    unit: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "target_value": self.target_value,
            "current_value": self.current_value,
            "unit": self.unit,
            "status": self.status,
        }
