"""CP-SAT model construction for session re-assignment."""

from dataclasses import dataclass
from datetime import date

from ortools.sat.python import cp_model

from ..models import ScheduledSession
from ..utils import overlaps

# Objective weight of a preferred slot relative to staying in place
PREFERENCE_WEIGHT = 100
STAY_WEIGHT = 1


@dataclass(frozen=True)
class SlotOption:
    """A slot a session may be assigned to."""

    day: date
    start: int
    end: int
    preferred: bool
    current: bool = False


class ModelBuilder:
    """Builds a per-therapist assignment model.

    One boolean per (session, slot option); each session takes exactly one
    option, overlapping options of two sessions on the same date exclude
    each other, and the objective maximizes preferred placements with a
    small bonus for leaving a session where it is.
    """

    def __init__(self, sessions: list[ScheduledSession], options: dict[str, list[SlotOption]]):
        self.sessions = sessions
        self.options = options

        self.model = cp_model.CpModel()
        # x[(session_id, option_index)] = BoolVar
        self.x: dict[tuple[str, int], cp_model.IntVar] = {}

    def build(self) -> cp_model.CpModel:
        """
        Build the complete CP-SAT model.

        Returns the configured CpModel ready for solving.
        """
        self._create_variables()
        self._add_single_assignment_constraint()
        self._add_no_overlap_constraint()
        self._add_objective()
        return self.model

    def _create_variables(self) -> None:
        for session in self.sessions:
            for index in range(len(self.options[session.id])):
                self.x[(session.id, index)] = self.model.NewBoolVar(f"x_{session.id}_{index}")

    def _add_single_assignment_constraint(self) -> None:
        """Every session lands in exactly one of its options."""
        for session in self.sessions:
            self.model.AddExactlyOne(
                [self.x[(session.id, index)] for index in range(len(self.options[session.id]))]
            )

    def _add_no_overlap_constraint(self) -> None:
        """Two sessions of the therapist may not share overlapping time."""
        for i, first in enumerate(self.sessions):
            for second in self.sessions[i + 1 :]:
                for a, option_a in enumerate(self.options[first.id]):
                    for b, option_b in enumerate(self.options[second.id]):
                        if option_a.day != option_b.day:
                            continue
                        if overlaps(option_a.start, option_a.end, option_b.start, option_b.end):
                            self.model.AddBoolOr(
                                [self.x[(first.id, a)].Not(), self.x[(second.id, b)].Not()]
                            )

    def _add_objective(self) -> None:
        terms = []
        for (session_id, index), var in self.x.items():
            option = self.options[session_id][index]
            weight = (PREFERENCE_WEIGHT if option.preferred else 0) + (STAY_WEIGHT if option.current else 0)
            if weight:
                terms.append(weight * var)
        if terms:
            self.model.Maximize(sum(terms))

    def get_variables(self) -> dict[tuple[str, int], cp_model.IntVar]:
        """Get the variables dictionary."""
        return self.x

    def get_model(self) -> cp_model.CpModel:
        """Get the CP-SAT model."""
        return self.model
