"""Schedule optimization: steepest-ascent hill climbing and a CP-SAT variant."""

import copy
import logging
import time as timer
from dataclasses import replace
from datetime import date, timedelta

from ortools.sat.python import cp_model

from .config import SchedulingPolicy
from .conflicts import ConflictDetector
from .constants import DEFAULT_SOLVER_TIME_LIMIT
from .models import (
    OptimizationConfig,
    OptimizationResult,
    OptimizationStrategy,
    Relocation,
    ResolutionStatus,
    ScheduledSession,
    SessionCandidate,
)
from .scoring import matches_preference, score_schedule, session_score
from .snapshot import ScheduleSnapshot
from .solver import ModelBuilder, SlotOption, SolutionExtractor
from .utils import minutes_to_time, week_bounds

logger = logging.getLogger(__name__)

# Score changes below this are treated as no change
EPSILON = 1e-9


class ScheduleOptimizer:
    """Raises the composite quality score of a session set by relocating sessions.

    Hill climbing moves one session per iteration to the conflict-free slot
    of the same therapist, within the session's calendar week, that gives the
    largest strict improvement. It stops at the iteration cap, the time
    budget or a local optimum; it is a heuristic, not a global optimum.
    Sessions with high or critical conflicts are never moved.
    """

    def __init__(
        self,
        detector: ConflictDetector | None = None,
        policy: SchedulingPolicy | None = None,
        solver_time_limit: int = DEFAULT_SOLVER_TIME_LIMIT,
    ):
        self.policy = policy or SchedulingPolicy()
        self.detector = detector or ConflictDetector(policy=self.policy)
        self.solver_time_limit = solver_time_limit

    def optimize(
        self,
        sessions: list[ScheduledSession],
        config: OptimizationConfig,
        snapshot: ScheduleSnapshot,
    ) -> OptimizationResult:
        """Optimize a session set against the rest of a snapshot.

        Args:
            sessions: Sessions to improve; they replace same-id sessions in the snapshot
            config: Weights, limits and strategy
            snapshot: Availability and all other commitments

        Returns:
            OptimizationResult whose final score is never below the initial one
        """
        started = timer.perf_counter()
        result = OptimizationResult(strategy=config.strategy)
        if not sessions:
            return result

        working = snapshot.copy()
        current: dict[str, ScheduledSession] = {}
        for session in sessions:
            clone = copy.deepcopy(session)
            working.add_session(clone)
            current[clone.id] = clone

        period_start = config.period_start or min(s.session_date for s in sessions)
        period_end = config.period_end or max(s.session_date for s in sessions)
        available = {
            tid: working.available_minutes(tid, period_start, period_end)
            for tid in sorted({s.therapist_id for s in sessions})
        }

        def evaluate() -> float:
            return score_schedule(
                list(current.values()),
                available,
                config.preferred_times,
                config.weights,
                config.max_gap_between_sessions,
            ).composite

        result.initial_score = evaluate()
        context = _Context(working, current, config, period_start, period_end, evaluate, started)

        if config.strategy == OptimizationStrategy.CP_SAT:
            self._solve_cp_sat(context, result)
        else:
            self._hill_climb(context, result)

        result.final_score = evaluate()
        if result.final_score + EPSILON < result.initial_score or (
            config.strategy == OptimizationStrategy.CP_SAT and result.final_score <= result.initial_score + EPSILON
        ):
            # Keep the input unchanged when the search found nothing better
            current = {s.id: copy.deepcopy(s) for s in sessions}
            context.current = current
            result.relocations = []
            result.final_score = result.initial_score

        for session in current.values():
            day_sessions = [
                s
                for s in current.values()
                if s.session_date == session.session_date and s.therapist_id == session.therapist_id
            ]
            session.optimization_score = round(
                session_score(
                    session,
                    day_sessions,
                    config.preferred_times.get(session.demand_ref, []),
                    config.weights,
                    config.max_gap_between_sessions,
                ),
                2,
            )
        result.sessions = sorted(current.values(), key=lambda s: (s.session_date, s.start_time, s.id))
        result.optimization_time_ms = (timer.perf_counter() - started) * 1000

        logger.info(
            f"Optimization ({config.strategy.value}): {result.initial_score:.2f} -> {result.final_score:.2f} "
            f"after {result.iterations} iteration(s), {len(result.relocations)} relocation(s)"
        )
        return result

    def _is_movable(self, session: ScheduledSession, context: "_Context") -> bool:
        """Scheduled/confirmed sessions with only low or medium conflicts, or a sub-ideal local score."""
        if not session.status.is_movable:
            return False
        worst = session.max_conflict_severity
        if worst is not None:
            return not worst.is_blocking
        day_sessions = [
            s
            for s in context.current.values()
            if s.session_date == session.session_date and s.therapist_id == session.therapist_id
        ]
        local = session_score(
            session,
            day_sessions,
            context.config.preferred_times.get(session.demand_ref, []),
            context.config.weights,
            context.config.max_gap_between_sessions,
        )
        return local < 100.0 - EPSILON

    def _targets(self, session: ScheduledSession, context: "_Context", snapshot: ScheduleSnapshot) -> list[tuple[date, int]]:
        """Slots of the same therapist in the session's calendar week, excluding its own."""
        week_start, week_end = week_bounds(session.session_date)
        first = max(week_start, context.period_start)
        last = min(week_end, context.period_end)
        targets = []
        day = first
        while day <= last:
            for start in snapshot.slot_starts(
                session.therapist_id, day, session.duration_minutes, self.policy.slot_step_minutes
            ):
                if day == session.session_date and start == session.start_minutes:
                    continue
                targets.append((day, start))
            day += timedelta(days=1)
        return targets

    def _moved(self, session: ScheduledSession, day: date, start: int) -> ScheduledSession:
        moved = replace(
            session,
            session_date=day,
            start_time=minutes_to_time(start),
            end_time=minutes_to_time(start + session.duration_minutes),
            conflict_details=[],
            has_conflicts=False,
            equipment_ids=list(session.equipment_ids),
        )
        if session.conflict_details:
            moved.resolution_status = ResolutionStatus.RESOLVED
        return moved

    def _apply(self, context: "_Context", moved: ScheduledSession, result: OptimizationResult, before: float) -> float:
        original = context.current[moved.id]
        context.current[moved.id] = moved
        context.working.replace_session(moved)
        after = context.evaluate()
        result.relocations.append(
            Relocation(
                session_id=moved.id,
                from_date=original.session_date,
                from_start=original.start_time,
                to_date=moved.session_date,
                to_start=moved.start_time,
                score_gain=after - before,
            )
        )
        return after

    def _hill_climb(self, context: "_Context", result: OptimizationResult) -> None:
        score = result.initial_score
        config = context.config
        deadline = context.started + config.time_budget_seconds
        result.converged = False

        while result.iterations < config.max_iterations:
            if timer.perf_counter() > deadline:
                logger.info("Optimization time budget reached")
                break

            best: tuple[float, ScheduledSession] | None = None
            for session_id in sorted(context.current):
                session = context.current[session_id]
                if not self._is_movable(session, context):
                    continue
                for day, start in self._targets(session, context, context.working):
                    moved = self._moved(session, day, start)
                    if self.detector.check(SessionCandidate.from_session(moved), context.working):
                        continue
                    context.current[session_id] = moved
                    gain = context.evaluate() - score
                    context.current[session_id] = session
                    if gain > EPSILON and (best is None or gain > best[0] + EPSILON):
                        best = (gain, moved)

            if best is None:
                result.converged = True
                break
            score = self._apply(context, best[1], result, score)
            result.iterations += 1
            logger.debug(f"Iteration {result.iterations}: moved {best[1].id} (+{best[0]:.3f})")

    def _solve_cp_sat(self, context: "_Context", result: OptimizationResult) -> None:
        """Re-assign each therapist's movable sessions with CP-SAT.

        Therapists are solved one after another so each model sees the
        placements already chosen for the others. A therapist's solution is
        kept only if every moved session re-checks conflict-free.
        """
        score = result.initial_score
        result.converged = True
        deadline = context.started + context.config.time_budget_seconds

        for therapist_id in sorted({s.therapist_id for s in context.current.values()}):
            remaining = deadline - timer.perf_counter()
            if remaining <= 0:
                result.converged = False
                break
            movable = [
                context.current[sid]
                for sid in sorted(context.current)
                if context.current[sid].therapist_id == therapist_id
                and self._is_movable(context.current[sid], context)
            ]
            if not movable:
                continue

            pinned = context.working.copy()
            for session in movable:
                pinned.remove_session(session.id)

            options: dict[str, list[SlotOption]] = {}
            for session in movable:
                preferred = context.config.preferred_times.get(session.demand_ref, [])
                options[session.id] = [
                    SlotOption(
                        session.session_date,
                        session.start_minutes,
                        session.end_minutes,
                        matches_preference(session, preferred),
                        current=True,
                    )
                ]
                for day, start in self._targets(session, context, pinned):
                    moved = self._moved(session, day, start)
                    if self.detector.check(SessionCandidate.from_session(moved), pinned):
                        continue
                    options[session.id].append(
                        SlotOption(day, start, moved.end_minutes, matches_preference(moved, preferred))
                    )

            builder = ModelBuilder(movable, options)
            model = builder.build()
            solver = cp_model.CpSolver()
            solver.parameters.max_time_in_seconds = min(self.solver_time_limit, remaining)
            solver.parameters.num_workers = 1
            solver.parameters.log_search_progress = False
            status = solver.Solve(model)
            result.iterations += 1

            if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
                logger.warning(f"CP-SAT found no assignment for therapist {therapist_id}")
                result.converged = False
                continue
            if status != cp_model.OPTIMAL:
                result.converged = False

            assignment = SolutionExtractor(solver, builder.get_variables(), options).extract()
            moves = []
            for session in movable:
                option = assignment.get(session.id)
                if option is not None and not option.current:
                    moves.append(self._moved(session, option.day, option.start))
            if not moves:
                continue

            trial = context.working.copy()
            for moved in moves:
                trial.replace_session(moved)
            if any(self.detector.check_session(moved, trial) for moved in moves):
                logger.warning(f"Discarding CP-SAT moves for therapist {therapist_id}: re-check found conflicts")
                continue
            for moved in moves:
                score = self._apply(context, moved, result, score)


class _Context:
    """Mutable state shared by one optimization run."""

    def __init__(self, working, current, config, period_start, period_end, evaluate, started):
        self.working: ScheduleSnapshot = working
        self.current: dict[str, ScheduledSession] = current
        self.config: OptimizationConfig = config
        self.period_start: date = period_start
        self.period_end: date = period_end
        self.evaluate = evaluate
        self.started: float = started
