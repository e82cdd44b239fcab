"""Schedule quality scores shared by the generator, optimizer and metrics."""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from .constants import DEFAULT_MAX_GAP_MINUTES, DEFAULT_OPTIMIZATION_WEIGHTS
from .models import ScheduledSession, TimeSlot


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores (0-100) and their weighted composite."""

    utilization: float
    preference: float
    gap: float
    composite: float

    def to_dict(self) -> dict[str, float]:
        return {
            "utilization": round(self.utilization, 2),
            "preference": round(self.preference, 2),
            "gap": round(self.gap, 2),
            "composite": round(self.composite, 2),
        }


def _active(sessions: Iterable[ScheduledSession]) -> list[ScheduledSession]:
    return [s for s in sessions if s.status.is_active]


def utilization_by_therapist(
    sessions: Iterable[ScheduledSession],
    available_minutes: dict[str, int],
) -> dict[str, float]:
    """Booked minutes as a percentage of available minutes, per therapist."""
    booked: dict[str, int] = defaultdict(int)
    for session in _active(sessions):
        booked[session.therapist_id] += session.duration_minutes
    return {
        therapist_id: min(100.0, 100.0 * booked.get(therapist_id, 0) / minutes)
        for therapist_id, minutes in sorted(available_minutes.items())
        if minutes > 0
    }


def utilization_score(sessions: Iterable[ScheduledSession], available_minutes: dict[str, int]) -> float:
    """Average therapist utilization; 0 when nobody has availability."""
    rates = utilization_by_therapist(sessions, available_minutes)
    if not rates:
        return 0.0
    return sum(rates.values()) / len(rates)


def matches_preference(session: ScheduledSession, preferred: list[TimeSlot]) -> bool:
    """A session with no stated preference always matches."""
    if not preferred:
        return True
    return any(slot.contains(session.start_minutes, session.end_minutes) for slot in preferred)


def preference_score(
    sessions: Iterable[ScheduledSession],
    preferred_times: dict[str, list[TimeSlot]],
) -> float:
    """Share of sessions that lie inside one of their demand's preferred times."""
    active = _active(sessions)
    if not active:
        return 100.0
    matched = sum(1 for s in active if matches_preference(s, preferred_times.get(s.demand_ref, [])))
    return 100.0 * matched / len(active)


def idle_gaps(sessions: Iterable[ScheduledSession]) -> list[int]:
    """Idle minutes between consecutive same-day sessions of each therapist."""
    by_day: dict[tuple, list[ScheduledSession]] = defaultdict(list)
    for session in _active(sessions):
        by_day[(session.therapist_id, session.session_date)].append(session)

    gaps = []
    for day_sessions in by_day.values():
        day_sessions.sort(key=lambda s: (s.start_minutes, s.id))
        for previous, current in zip(day_sessions, day_sessions[1:]):
            gaps.append(max(0, current.start_minutes - previous.end_minutes))
    return gaps


def gap_score(sessions: Iterable[ScheduledSession], max_gap: int = DEFAULT_MAX_GAP_MINUTES) -> float:
    """100 for no idle time, falling linearly to 0 at an average gap of ``max_gap``."""
    gaps = idle_gaps(sessions)
    if not gaps or max_gap <= 0:
        return 100.0
    average = sum(gaps) / len(gaps)
    return 100.0 * (1 - min(average, max_gap) / max_gap)


def composite_score(
    utilization: float,
    preference: float,
    gap: float,
    weights: dict[str, float] | None = None,
) -> float:
    """Weighted sum of the sub-scores, normalized by the total weight."""
    weights = weights or DEFAULT_OPTIMIZATION_WEIGHTS
    total = sum(weights.values())
    if total <= 0:
        return 0.0
    return (
        weights["utilization"] * utilization + weights["preference"] * preference + weights["gap"] * gap
    ) / total


def score_schedule(
    sessions: list[ScheduledSession],
    available_minutes: dict[str, int],
    preferred_times: dict[str, list[TimeSlot]],
    weights: dict[str, float] | None = None,
    max_gap: int = DEFAULT_MAX_GAP_MINUTES,
) -> ScoreBreakdown:
    utilization = utilization_score(sessions, available_minutes)
    preference = preference_score(sessions, preferred_times)
    gap = gap_score(sessions, max_gap)
    return ScoreBreakdown(
        utilization=utilization,
        preference=preference,
        gap=gap,
        composite=composite_score(utilization, preference, gap, weights),
    )


def session_score(
    session: ScheduledSession,
    day_sessions: list[ScheduledSession],
    preferred: list[TimeSlot],
    weights: dict[str, float] | None = None,
    max_gap: int = DEFAULT_MAX_GAP_MINUTES,
) -> float:
    """Local quality of one session within its therapist's day.

    Utilization is not a per-session property and counts as full; the gap
    part uses the idle time to the nearest neighbouring session.
    """
    preference = 100.0 if matches_preference(session, preferred) else 0.0
    neighbours = [
        s for s in day_sessions if s.id != session.id and s.therapist_id == session.therapist_id and s.status.is_active
    ]
    if neighbours and max_gap > 0:
        nearest = min(
            max(0, s.start_minutes - session.end_minutes, session.start_minutes - s.end_minutes) for s in neighbours
        )
        gap = 100.0 * (1 - min(nearest, max_gap) / max_gap)
    else:
        gap = 100.0
    return composite_score(100.0, preference, gap, weights)
