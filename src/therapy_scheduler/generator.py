"""Greedy schedule generation with per-week backtracking."""

import logging
import time as timer
from dataclasses import dataclass, field
from datetime import date, timedelta

from .config import SchedulingPolicy, SeverityConfig
from .conflicts import ConflictDetector, worst_severity
from .constants import CONFIDENCE_WEIGHTS, SUGGESTIONS_PER_SHORTFALL
from .exceptions import InvalidInputError, ResourceNotFoundError
from .models import (
    ConflictType,
    ResourceAvailability,
    ScheduleConflict,
    ScheduledSession,
    SchedulingRequest,
    SchedulingResult,
    SchedulingSuggestion,
    SessionCandidate,
    SessionStatus,
    Shortfall,
)
from .scoring import score_schedule
from .snapshot import ScheduleSnapshot
from .utils import deterministic_id, format_time, minutes_to_time, week_chunks

logger = logging.getLogger(__name__)


@dataclass
class _Option:
    """One evaluated (therapist, date, slot) placement."""

    therapist_id: str
    day: date
    start: int
    end: int
    avoided: bool
    preferred: bool
    distance: int
    room_id: str | None = None
    conflicts: list[ScheduleConflict] = field(default_factory=list)

    @property
    def rank_key(self) -> tuple:
        return (self.avoided, not self.preferred, self.distance, self.start, self.therapist_id)


def candidate_weekdays(request: SchedulingRequest) -> list[int]:
    """Preferred days if given, else every day not avoided, else every day."""
    if request.preferred_days:
        return sorted(set(request.preferred_days))
    days = [d for d in range(7) if d not in set(request.avoid_days)]
    return days or list(range(7))


def validate_request(request: SchedulingRequest) -> None:
    """Reject malformed requests before any allocation.

    Raises:
        InvalidInputError: With every problem found listed in ``errors``
    """
    errors = []
    if request.start_date >= request.end_date:
        errors.append("start_date must be before end_date")
    if request.total_sessions <= 0:
        errors.append("total_sessions must be positive")
    if request.sessions_per_week <= 0:
        errors.append("sessions_per_week must be positive")
    if request.session_duration <= 0:
        errors.append("session_duration must be positive")
    if not 1 <= request.priority <= 5:
        errors.append("priority must be between 1 and 5")
    if not 0 <= request.flexibility_score <= 100:
        errors.append("flexibility_score must be between 0 and 100")
    if request.max_gap_between_sessions is not None and request.max_gap_between_sessions <= 0:
        errors.append("max_gap_between_sessions must be positive")
    for day in list(request.preferred_days) + list(request.avoid_days):
        if not 0 <= day <= 6:
            errors.append(f"day {day} outside 0-6")
    for slot in list(request.preferred_times) + list(request.avoid_times):
        if slot.start_time >= slot.end_time:
            errors.append(f"time range {format_time(slot.start_time)}-{format_time(slot.end_time)} is empty")
    if errors:
        raise InvalidInputError("; ".join(errors), field="scheduling request", errors=errors)


class ScheduleGenerator:
    """Allocates a demand into concrete sessions.

    Weeks are walked in order from the request's start date. Within a week
    each needed session takes the best-ranked conflict-free slot across the
    remaining candidate dates; when none exists, a flexible request may
    accept the least severe conflicting slot. Anything still missing is
    recorded as a shortfall with suggestions. The generator never writes to
    the store and its output depends only on the request and the snapshot.
    """

    def __init__(
        self,
        detector: ConflictDetector | None = None,
        policy: SchedulingPolicy | None = None,
        severity: SeverityConfig | None = None,
    ):
        self.policy = policy or SchedulingPolicy()
        self.severity = severity or SeverityConfig()
        self.detector = detector or ConflictDetector(self.severity, self.policy)

    def _therapists(self, request: SchedulingRequest, snapshot: ScheduleSnapshot) -> list[str]:
        if request.preferred_therapist_id:
            if not snapshot.has_therapist(request.preferred_therapist_id):
                raise ResourceNotFoundError("therapist", request.preferred_therapist_id)
            return [request.preferred_therapist_id]
        return snapshot.therapist_ids

    def _check_equipment(self, request: SchedulingRequest, snapshot: ScheduleSnapshot) -> None:
        for equipment_id in request.required_equipment:
            item = snapshot.equipment.get(equipment_id)
            if item is None or not item.is_active:
                raise ResourceNotFoundError("equipment", equipment_id)

    def _options(
        self,
        request: SchedulingRequest,
        snapshot: ScheduleSnapshot,
        therapists: list[str],
        day: date,
    ) -> list[_Option]:
        options = []
        for therapist_id in therapists:
            for start in snapshot.slot_starts(
                therapist_id, day, request.session_duration, self.policy.slot_step_minutes
            ):
                end = start + request.session_duration
                avoided = any(t.overlaps(start, end) for t in request.avoid_times)
                if avoided and request.flexibility_score < self.policy.flexibility_threshold:
                    continue
                preferred = any(t.overlaps(start, end) for t in request.preferred_times)
                distance = min((abs(start - t.start_minutes) for t in request.preferred_times), default=0)
                options.append(_Option(therapist_id, day, start, end, avoided, preferred, distance))
        options.sort(key=lambda o: o.rank_key)
        return options

    def _pick_room(
        self,
        request: SchedulingRequest,
        snapshot: ScheduleSnapshot,
        option: _Option,
    ) -> str | None:
        """First room of the required type that is free for the slot, by id."""
        if not request.required_room_type:
            return None
        rooms = sorted(
            r.id
            for r in snapshot.rooms.values()
            if r.is_active and r.room_type == request.required_room_type
        )
        if not rooms:
            return None
        taken = {
            s.room_id
            for s in snapshot.sessions_on(option.day)
            if s.start_minutes < option.end and s.end_minutes > option.start
        }
        for room_id in rooms:
            if room_id not in taken:
                return room_id
        return rooms[0]

    def _session_id(self, request: SchedulingRequest, option: _Option) -> str:
        return deterministic_id(request.demand_ref, option.day, option.start, option.therapist_id)

    def _candidate(self, request: SchedulingRequest, option: _Option) -> SessionCandidate:
        return SessionCandidate(
            therapist_id=option.therapist_id,
            session_date=option.day,
            start_time=minutes_to_time(option.start),
            end_time=minutes_to_time(option.end),
            room_id=option.room_id,
            equipment_ids=tuple(request.required_equipment),
            student_id=request.student_id,
            session_id=self._session_id(request, option),
            avoid_back_to_back=request.avoid_back_to_back,
        )

    def _acceptable(self, request: SchedulingRequest, option: _Option) -> bool:
        """Whether a conflicting option may still be accepted."""
        if request.flexibility_score < self.policy.flexibility_threshold:
            return False
        if any(c.conflict_type == ConflictType.THERAPIST_DOUBLE_BOOKING for c in option.conflicts):
            return False
        return self.severity.accepts(worst_severity(option.conflicts))

    def _order_dates(self, request: SchedulingRequest, dates: list[date], last_placed: date | None) -> list[date]:
        if request.requires_consecutive_sessions and last_placed is not None:
            following = last_placed + timedelta(days=1)
            if following in dates:
                return [following] + [d for d in dates if d != following]
        return dates

    def generate(self, request: SchedulingRequest, snapshot: ScheduleSnapshot) -> SchedulingResult:
        """Generate sessions for a demand against a snapshot.

        Weeks are seven-day blocks anchored at ``request.start_date``, and
        each week's candidate dates are tried in calendar order. For a
        request starting on a Wednesday the order is Wednesday through the
        following Tuesday, so sessions are numbered chronologically.

        Args:
            request: Demand to place
            snapshot: Existing sessions, availability and resources

        Returns:
            SchedulingResult with placed sessions, unresolved conflicts and
            one shortfall per week that fell short

        Raises:
            InvalidInputError: Malformed request
            ResourceNotFoundError: Unknown preferred therapist or equipment
        """
        validate_request(request)
        therapists = self._therapists(request, snapshot)
        self._check_equipment(request, snapshot)

        started = timer.perf_counter()
        working = snapshot.copy()
        result = SchedulingResult(demand_ref=request.demand_ref)
        weekdays = set(candidate_weekdays(request))
        weeks = week_chunks(request.start_date, request.end_date)
        if len(weeks) > self.policy.max_horizon_weeks:
            result.warnings.append(
                f"Request spans {len(weeks)} weeks; only the first {self.policy.max_horizon_weeks} were scheduled"
            )
            weeks = weeks[: self.policy.max_horizon_weeks]

        if not therapists:
            result.warnings.append("No therapist with availability is registered")
        if request.required_room_type and not any(
            r.is_active and r.room_type == request.required_room_type for r in snapshot.rooms.values()
        ):
            result.warnings.append(f"No active room of type '{request.required_room_type}'")

        evaluations = 0
        budget_exhausted = False
        placed_dates: list[date] = []

        for week in weeks:
            remaining = request.total_sessions - len(result.generated_sessions)
            if remaining <= 0:
                break
            needed = min(request.sessions_per_week, remaining)
            open_dates = [d for d in week if d.weekday() in weekdays]
            seen: dict[tuple, _Option] = {}
            missing = 0

            for index in range(needed):
                chosen: _Option | None = None
                fallback: _Option | None = None
                dates = self._order_dates(request, open_dates, placed_dates[-1] if placed_dates else None)

                for day in dates:
                    for option in self._options(request, working, therapists, day):
                        if evaluations >= self.policy.max_candidate_evaluations:
                            budget_exhausted = True
                            break
                        evaluations += 1
                        option.room_id = self._pick_room(request, working, option)
                        option.conflicts = self.detector.check(self._candidate(request, option), working)
                        seen[(option.therapist_id, option.day, option.start)] = option
                        if not option.conflicts:
                            chosen = option
                            break
                        if self._acceptable(request, option) and (
                            fallback is None or self._fallback_key(option) < self._fallback_key(fallback)
                        ):
                            fallback = option
                    if chosen is not None or budget_exhausted:
                        break

                chosen = chosen or fallback
                if chosen is None:
                    missing = needed - index
                    break

                session = self._build_session(request, chosen, len(result.generated_sessions) + 1)
                working.add_session(session)
                seen.pop((chosen.therapist_id, chosen.day, chosen.start), None)
                result.generated_sessions.append(session)
                result.conflicts.extend(session.conflict_details)
                open_dates.remove(chosen.day)
                placed_dates.append(chosen.day)
                logger.debug(
                    f"{request.demand_ref}: placed {session.session_number} on {chosen.day} "
                    f"{format_time(session.start_time)} with {chosen.therapist_id} "
                    f"({len(chosen.conflicts)} conflict(s))"
                )
                if budget_exhausted:
                    missing = needed - index - 1
                    break

            if missing:
                result.shortfalls.append(
                    Shortfall(
                        week_start=week[0],
                        week_end=week[-1],
                        missing_sessions=missing,
                        reason=self._shortfall_reason(open_dates, seen, budget_exhausted),
                        suggestions=self._suggestions(request, list(seen.values()), placed_dates, week[0]),
                    )
                )
            if budget_exhausted:
                result.warnings.append(
                    f"Stopped after {self.policy.max_candidate_evaluations} candidate evaluations"
                )
                break

        placed = len(result.generated_sessions)
        result.unscheduled_sessions = request.total_sessions - placed
        if result.unscheduled_sessions:
            result.warnings.append(
                f"Only {placed} of {request.total_sessions} sessions could be scheduled in the requested range"
            )
        result.warnings.extend(self._gap_warnings(request, placed_dates))
        self._score(request, snapshot, therapists, result)
        result.generation_time_ms = (timer.perf_counter() - started) * 1000

        logger.info(
            f"{request.demand_ref}: placed {placed}/{request.total_sessions} sessions, "
            f"{len(result.conflicts)} unresolved conflict(s), {evaluations} candidates evaluated"
        )
        return result

    def _fallback_key(self, option: _Option) -> tuple:
        worst = worst_severity(option.conflicts)
        return (worst.rank if worst else 0, len(option.conflicts), option.day, option.rank_key)

    def _build_session(self, request: SchedulingRequest, option: _Option, number: int) -> ScheduledSession:
        session_id = self._session_id(request, option)
        return ScheduledSession(
            id=session_id,
            session_number=f"{request.demand_ref}-{number:03d}",
            demand_ref=request.demand_ref,
            therapist_id=option.therapist_id,
            session_date=option.day,
            start_time=minutes_to_time(option.start),
            end_time=minutes_to_time(option.end),
            duration_minutes=request.session_duration,
            room_id=option.room_id,
            equipment_ids=list(request.required_equipment),
            student_id=request.student_id,
            category=request.category,
            priority=request.priority,
            status=SessionStatus.SCHEDULED,
            has_conflicts=bool(option.conflicts),
            conflict_details=list(option.conflicts),
        )

    def _shortfall_reason(self, open_dates: list[date], seen: dict, budget_exhausted: bool) -> str:
        if budget_exhausted:
            return "Candidate evaluation budget exhausted"
        if not open_dates:
            return "No eligible days left in this week"
        if not seen:
            return "No availability window fits the session on the eligible days"
        return "Every available slot conflicts with existing commitments"

    def _suggestions(
        self,
        request: SchedulingRequest,
        options: list[_Option],
        placed_dates: list[date],
        week_start: date,
    ) -> list[SchedulingSuggestion]:
        """Rank near-miss placements seen this week by confidence.

        Confidence weighs preference match, resource fit (fewer and milder
        conflicts) and cadence (closeness to the ideal spacing after the last
        placed session).
        """
        spacing = max(1, 7 // request.sessions_per_week)
        ideal = placed_dates[-1] + timedelta(days=spacing) if placed_dates else week_start
        ranked = []
        for option in options:
            if option.avoided:
                preference = 0.0
            elif option.preferred or not request.preferred_times:
                preference = 100.0
            else:
                preference = 50.0
            resource = max(0.0, 100.0 - 20.0 * sum(c.severity.rank for c in option.conflicts))
            cadence = max(0.0, 100.0 - 15.0 * abs((option.day - ideal).days))
            confidence = (
                CONFIDENCE_WEIGHTS["preference"] * preference
                + CONFIDENCE_WEIGHTS["resource"] * resource
                + CONFIDENCE_WEIGHTS["cadence"] * cadence
            )
            types = {c.conflict_type for c in option.conflicts}
            therapist_busy = types & {ConflictType.THERAPIST_DOUBLE_BOOKING, ConflictType.TIME_CONSTRAINT}
            reasons = []
            if option.preferred:
                reasons.append("Within a preferred time")
            if not option.conflicts:
                reasons.append("No conflicts")
            ranked.append(
                (
                    (-round(confidence, 6), option.day, option.start, option.therapist_id),
                    SchedulingSuggestion(
                        session_date=option.day,
                        start_time=minutes_to_time(option.start),
                        end_time=minutes_to_time(option.end),
                        therapist_id=option.therapist_id,
                        confidence_score=round(confidence, 1),
                        reasons=reasons,
                        trade_offs=[c.description.en for c in option.conflicts],
                        resource_availability=ResourceAvailability(
                            therapist_available=not therapist_busy,
                            room_available=ConflictType.ROOM_UNAVAILABLE not in types,
                            equipment_available=ConflictType.EQUIPMENT_CONFLICT not in types,
                            student_available=ConflictType.STUDENT_UNAVAILABLE not in types,
                            conflicts=tuple(c.rule for c in option.conflicts),
                        ),
                    ),
                )
            )
        ranked.sort(key=lambda item: item[0])
        return [suggestion for _, suggestion in ranked[:SUGGESTIONS_PER_SHORTFALL]]

    def _gap_warnings(self, request: SchedulingRequest, placed_dates: list[date]) -> list[str]:
        if not request.max_gap_between_sessions:
            return []
        warnings = []
        ordered = sorted(placed_dates)
        for previous, current in zip(ordered, ordered[1:]):
            gap = (current - previous).days
            if gap > request.max_gap_between_sessions:
                warnings.append(
                    f"Gap of {gap} days between {previous} and {current} exceeds "
                    f"{request.max_gap_between_sessions} days"
                )
        return warnings

    def _score(
        self,
        request: SchedulingRequest,
        snapshot: ScheduleSnapshot,
        therapists: list[str],
        result: SchedulingResult,
    ) -> None:
        used = sorted({s.therapist_id for s in result.generated_sessions}) or therapists
        available = {tid: snapshot.available_minutes(tid, request.start_date, request.end_date) for tid in used}
        scores = score_schedule(
            result.generated_sessions,
            available,
            {request.demand_ref: request.preferred_times},
        )
        result.optimization_score = scores.composite
        result.preference_match_score = scores.preference
        result.therapist_utilization = scores.utilization
