"""Constants for the scheduling engine."""

from enum import Enum


class Locale(str, Enum):
    """Languages carried by bilingual text fields."""

    EN = "en"
    AR = "ar"


# Generation defaults
DEFAULT_SLOT_STEP_MINUTES = 15
DEFAULT_TEMPLATE_HORIZON_WEEKS = 12
MAX_HORIZON_WEEKS = 104
MAX_CANDIDATE_EVALUATIONS = 50_000

# Generator accepts a conflicting candidate only at or above this flexibility
FLEXIBILITY_THRESHOLD = 70

# Top suggestions returned per shortfall
SUGGESTIONS_PER_SHORTFALL = 3

# Alternative free slots returned by the detector
MAX_ALTERNATIVE_SLOTS = 5

# Bulk operation backups kept for rollback, oldest evicted first
MAX_RETAINED_BACKUPS = 100

# Business rules carried over from the clinic configuration
MIN_BREAK_MINUTES = 15
MAX_SESSIONS_PER_DAY = 8
BUSINESS_HOURS_START = "08:00"
BUSINESS_HOURS_END = "18:00"

# Optimizer defaults
DEFAULT_MAX_ITERATIONS = 50
DEFAULT_MAX_GAP_MINUTES = 120
DEFAULT_TIME_BUDGET_SECONDS = 10.0
DEFAULT_SOLVER_TIME_LIMIT = 10

DEFAULT_OPTIMIZATION_WEIGHTS = {
    "utilization": 0.4,
    "preference": 0.35,
    "gap": 0.25,
}

# Suggestion confidence weights
CONFIDENCE_WEIGHTS = {
    "preference": 0.4,
    "resource": 0.35,
    "cadence": 0.25,
}

# Severity for each detection rule.
# Keys are rule names used by the conflict detector.
DEFAULT_SEVERITY_RULES = {
    "therapist_overlap_committed": "critical",
    "therapist_overlap_scheduled": "high",
    "time_off": "high",
    "outside_availability": "medium",
    "window_at_capacity": "medium",
    "room_overlap": "medium",
    "equipment_overlap": "low",
    "student_overlap": "high",
    "daily_limit": "high",
    "back_to_back": "low",
    "template_collision": "medium",
}

# Worst severity the generator may accept for a flexible request
DEFAULT_MAX_ACCEPTED_SEVERITY = "medium"

# Performance targets for metrics (percentages)
PERFORMANCE_TARGETS = {
    "utilization_rate": 75.0,
    "no_show_rate": 5.0,
    "cancellation_rate": 10.0,
}

# Bilingual message templates used for conflict and warning descriptions.
# Each entry maps to (english, arabic) format strings.
MESSAGES = {
    "therapist_overlap": (
        "Therapist is already booked in session {session} ({start}-{end})",
        "المعالج محجوز في الجلسة {session} ({start}-{end})",
    ),
    "time_off": (
        "Therapist has time off on {date}: {reason}",
        "المعالج في إجازة بتاريخ {date}: {reason}",
    ),
    "outside_availability": (
        "No availability window covers {date} {start}-{end}",
        "لا توجد فترة إتاحة تغطي {date} {start}-{end}",
    ),
    "window_at_capacity": (
        "Availability window {start}-{end} is at capacity ({booked}/{capacity})",
        "فترة الإتاحة {start}-{end} مكتملة ({booked}/{capacity})",
    ),
    "room_overlap": (
        "Room {room} is booked for session {session}",
        "الغرفة {room} محجوزة للجلسة {session}",
    ),
    "equipment_overlap": (
        "Equipment {equipment} is reserved for session {session}",
        "المعدات {equipment} محجوزة للجلسة {session}",
    ),
    "student_overlap": (
        "Student already has session {session} at this time",
        "الطالب لديه الجلسة {session} في نفس الوقت",
    ),
    "daily_limit": (
        "Therapist reached the daily limit of {limit} sessions",
        "المعالج تجاوز الحد الأقصى للجلسات اليومية ({limit})",
    ),
    "back_to_back": (
        "Insufficient break between sessions ({gap} min < {minimum} min)",
        "فترة راحة غير كافية بين الجلسات ({gap} دقيقة < {minimum} دقيقة)",
    ),
    "template_collision": (
        "Template window {start}-{end} on {date} collides with {commitment}",
        "فترة القالب {start}-{end} بتاريخ {date} تتعارض مع {commitment}",
    ),
}
