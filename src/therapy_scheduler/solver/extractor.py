"""Solution extraction from the CP-SAT solver."""

import logging

from ortools.sat.python import cp_model

from .builder import SlotOption

logger = logging.getLogger(__name__)


class SolutionExtractor:
    """Reads the chosen slot option of every session from a solved model."""

    def __init__(
        self,
        solver: cp_model.CpSolver,
        variables: dict[tuple[str, int], cp_model.IntVar],
        options: dict[str, list[SlotOption]],
    ):
        self.solver = solver
        self.variables = variables
        self.options = options

    def extract(self) -> dict[str, SlotOption]:
        """
        Extract the assignment from the solver.

        Returns a mapping of session id to its chosen slot option.
        """
        assignment: dict[str, SlotOption] = {}
        for (session_id, index), var in sorted(self.variables.items()):
            if self.solver.Value(var) == 1:
                assignment[session_id] = self.options[session_id][index]
        missing = set(self.options) - set(assignment)
        if missing:
            logger.warning(f"Solver left {len(missing)} session(s) unassigned")
        return assignment
