"""Read-side metrics over sessions and availability."""

import logging
from collections.abc import Iterable
from datetime import date

import pandas as pd

from .config import SchedulingPolicy
from .constants import PERFORMANCE_TARGETS
from .models import (
    AvailabilityException,
    AvailabilityWindow,
    PerformanceTarget,
    ScheduleConflict,
    ScheduledSession,
    SchedulingMetrics,
    SessionStatus,
)
from .scoring import idle_gaps, score_schedule
from .snapshot import ScheduleSnapshot

logger = logging.getLogger(__name__)

SESSION_COLUMNS = [
    "id",
    "therapist_id",
    "room_id",
    "equipment_ids",
    "session_date",
    "duration_minutes",
    "status",
]


def sessions_frame(sessions: Iterable[ScheduledSession]) -> pd.DataFrame:
    """Tabulate sessions, one row per session."""
    rows = [
        {
            "id": s.id,
            "therapist_id": s.therapist_id,
            "room_id": s.room_id,
            "equipment_ids": list(s.equipment_ids),
            "session_date": s.session_date,
            "duration_minutes": s.duration_minutes,
            "status": s.status.value,
        }
        for s in sessions
    ]
    return pd.DataFrame(rows, columns=SESSION_COLUMNS)


def _rate(frame: pd.DataFrame, status: SessionStatus) -> float:
    if frame.empty:
        return 0.0
    return 100.0 * float((frame["status"] == status.value).sum()) / len(frame)


def _minutes_by(frame: pd.DataFrame, column: str) -> dict[str, float]:
    if frame.empty:
        return {}
    grouped = frame.dropna(subset=[column]).groupby(column)["duration_minutes"].sum()
    return {str(key): float(value) for key, value in grouped.items()}


class MetricsCalculator:
    """Pure reducer from sessions, windows and a period to ``SchedulingMetrics``."""

    def __init__(self, policy: SchedulingPolicy | None = None):
        self.policy = policy or SchedulingPolicy()

    def compute(
        self,
        sessions: Iterable[ScheduledSession],
        windows: Iterable[AvailabilityWindow],
        period_start: date,
        period_end: date,
        exceptions: Iterable[AvailabilityException] = (),
        conflicts: Iterable[ScheduleConflict] = (),
        weights: dict[str, float] | None = None,
    ) -> SchedulingMetrics:
        """Compute metrics for sessions dated within ``[period_start, period_end]``.

        Room and equipment utilization use business hours times the number
        of days in the period as their base.
        """
        windows = list(windows)
        in_period = [s for s in sessions if period_start <= s.session_date <= period_end]
        active = [s for s in in_period if s.status.is_active]
        frame = sessions_frame(in_period)
        active_frame = frame[frame["id"].isin({s.id for s in active})]

        availability = ScheduleSnapshot(windows=windows, exceptions=exceptions)
        therapist_ids = sorted(
            {w.therapist_id for w in availability_windows(windows)} | {s.therapist_id for s in in_period}
        )
        available = {tid: availability.available_minutes(tid, period_start, period_end) for tid in therapist_ids}

        metrics = SchedulingMetrics(period_start=period_start, period_end=period_end)
        metrics.total_sessions = len(in_period)

        booked = _minutes_by(active_frame, "therapist_id")
        metrics.therapist_utilization = {
            tid: round(100.0 * booked.get(tid, 0.0) / minutes, 2) if minutes else 0.0
            for tid, minutes in available.items()
        }

        base = self.policy.business_minutes * ((period_end - period_start).days + 1)
        metrics.room_utilization = {
            room: round(100.0 * minutes / base, 2) for room, minutes in _minutes_by(active_frame, "room_id").items()
        }
        equipment = active_frame.explode("equipment_ids") if not active_frame.empty else active_frame
        metrics.equipment_utilization = {
            item: round(100.0 * minutes / base, 2) for item, minutes in _minutes_by(equipment, "equipment_ids").items()
        }

        self._conflict_metrics(metrics, in_period, conflicts)

        gaps = idle_gaps(active)
        if gaps:
            metrics.average_gap_between_sessions = sum(gaps) / len(gaps)
            tight = sum(1 for gap in gaps if gap < self.policy.min_break_minutes)
            metrics.back_to_back_session_percentage = 100.0 * tight / len(gaps)

        metrics.reschedule_rate = _rate(frame, SessionStatus.RESCHEDULED)
        metrics.no_show_rate = _rate(frame, SessionStatus.NO_SHOW)
        metrics.cancellation_rate = _rate(frame, SessionStatus.CANCELLED)
        metrics.schedule_optimization_score = score_schedule(active, available, {}, weights).composite

        logger.debug(
            f"Metrics {period_start}..{period_end}: {metrics.total_sessions} sessions, "
            f"{metrics.total_conflicts} conflicts"
        )
        return metrics

    def _conflict_metrics(
        self,
        metrics: SchedulingMetrics,
        sessions: list[ScheduledSession],
        extra: Iterable[ScheduleConflict],
    ) -> None:
        unique: dict[str, ScheduleConflict] = {}
        for session in sessions:
            for conflict in session.conflict_details:
                unique.setdefault(conflict.id, conflict)
        for conflict in extra:
            unique.setdefault(conflict.id, conflict)
        if not unique:
            return

        frame = pd.DataFrame(
            [
                {
                    "type": c.conflict_type.value,
                    "severity": c.severity.value,
                    "detected_at": c.detected_at,
                    "resolved_at": c.resolved_at,
                }
                for c in unique.values()
            ]
        )
        metrics.total_conflicts = len(frame)
        metrics.conflicts_by_type = {k: int(v) for k, v in frame["type"].value_counts().sort_index().items()}
        metrics.conflicts_by_severity = {k: int(v) for k, v in frame["severity"].value_counts().sort_index().items()}

        resolved = frame.dropna(subset=["detected_at", "resolved_at"])
        if not resolved.empty:
            latency = pd.to_datetime(resolved["resolved_at"]) - pd.to_datetime(resolved["detected_at"])
            metrics.average_resolution_time = float(latency.dt.total_seconds().mean() / 3600)


def availability_windows(windows: Iterable[AvailabilityWindow]) -> list[AvailabilityWindow]:
    """Windows that add bookable time (not time off, not marked unavailable)."""
    return [w for w in windows if not w.is_time_off and w.is_available]


def evaluate_targets(
    metrics: SchedulingMetrics,
    targets: dict[str, float] | None = None,
) -> list[PerformanceTarget]:
    """Compare metrics against performance targets.

    Utilization must reach its target; no-show and cancellation rates must
    stay at or below theirs.
    """
    targets = targets or PERFORMANCE_TARGETS
    utilization = metrics.therapist_utilization
    current = {
        "utilization_rate": sum(utilization.values()) / len(utilization) if utilization else 0.0,
        "no_show_rate": metrics.no_show_rate,
        "cancellation_rate": metrics.cancellation_rate,
    }
    results = []
    for name, target in targets.items():
        value = round(current[name], 2)
        if name == "utilization_rate":
            status = "met" if value >= target else "below_target"
        else:
            status = "met" if value <= target else "above_target"
        results.append(PerformanceTarget(metric_name=name, target_value=target, current_value=value, unit="%", status=status))
    return results
