"""Scheduling policy loader."""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ..constants import (
    BUSINESS_HOURS_END,
    BUSINESS_HOURS_START,
    DEFAULT_SLOT_STEP_MINUTES,
    DEFAULT_TEMPLATE_HORIZON_WEEKS,
    FLEXIBILITY_THRESHOLD,
    MAX_CANDIDATE_EVALUATIONS,
    MAX_HORIZON_WEEKS,
    MAX_SESSIONS_PER_DAY,
    MIN_BREAK_MINUTES,
)
from ..exceptions import InvalidInputError
from ..utils import parse_time, time_to_minutes

logger = logging.getLogger(__name__)


@dataclass
class SchedulingPolicy:
    """Tunable limits shared by the generator, detector and optimizer."""

    slot_step_minutes: int = DEFAULT_SLOT_STEP_MINUTES
    min_break_minutes: int = MIN_BREAK_MINUTES
    max_sessions_per_day: int = MAX_SESSIONS_PER_DAY
    max_horizon_weeks: int = MAX_HORIZON_WEEKS
    template_horizon_weeks: int = DEFAULT_TEMPLATE_HORIZON_WEEKS
    flexibility_threshold: int = FLEXIBILITY_THRESHOLD
    max_candidate_evaluations: int = MAX_CANDIDATE_EVALUATIONS
    business_hours_start: str = BUSINESS_HOURS_START
    business_hours_end: str = BUSINESS_HOURS_END

    def __post_init__(self) -> None:
        if self.slot_step_minutes < 1:
            raise InvalidInputError("slot_step_minutes must be positive", field="policy")
        if self.business_minutes <= 0:
            raise InvalidInputError("business hours must be a non-empty range", field="policy")

    @property
    def business_minutes(self) -> int:
        """Length of the business day in minutes (room/equipment utilization base)."""
        start = time_to_minutes(parse_time(self.business_hours_start))
        end = time_to_minutes(parse_time(self.business_hours_end))
        return end - start

    @classmethod
    def from_file(cls, path: Path | None) -> "SchedulingPolicy":
        """Load policy overrides from ``scheduling-policy.json``; unknown keys are ignored."""
        if not path or not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = json.load(f)

        known = {f.name for f in fields(cls)}
        ignored = sorted(set(data) - known)
        if ignored:
            logger.warning(f"Ignoring unknown policy keys in {path}: {', '.join(ignored)}")
        return cls(**{k: v for k, v in data.items() if k in known})
