"""Conflict severity policy loader."""

import json
import logging
from pathlib import Path

from ..constants import DEFAULT_MAX_ACCEPTED_SEVERITY, DEFAULT_SEVERITY_RULES
from ..exceptions import InvalidInputError
from ..models import ConflictSeverity

logger = logging.getLogger(__name__)


class SeverityConfig:
    """Severity assigned to each conflict detection rule.

    Severity boundaries are policy, not constants: ``conflict-severity.json``
    may override any rule, e.g. ``{"rules": {"equipment_overlap": "medium"}}``.
    """

    def __init__(
        self,
        path: Path | None = None,
        rules: dict[str, str] | None = None,
        max_accepted: str | None = None,
    ):
        self._rules: dict[str, ConflictSeverity] = {
            rule: ConflictSeverity(value) for rule, value in DEFAULT_SEVERITY_RULES.items()
        }
        self.max_accepted = ConflictSeverity(DEFAULT_MAX_ACCEPTED_SEVERITY)

        if path and path.exists():
            self._load(path)
        if rules:
            self._apply_rules(rules)
        if max_accepted:
            self.max_accepted = ConflictSeverity(max_accepted)

    def _load(self, path: Path) -> None:
        """Load rule overrides from JSON."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        self._apply_rules(data.get("rules", {}))
        if "max_accepted_severity" in data:
            self.max_accepted = ConflictSeverity(data["max_accepted_severity"])
        logger.debug(f"Loaded severity policy from {path}")

    def _apply_rules(self, rules: dict[str, str]) -> None:
        for rule, value in rules.items():
            if rule not in DEFAULT_SEVERITY_RULES:
                raise InvalidInputError(f"unknown rule '{rule}'", field="severity policy")
            self._rules[rule] = ConflictSeverity(value)

    def severity_for(self, rule: str) -> ConflictSeverity:
        """Get the severity for a detection rule."""
        return self._rules[rule]

    def accepts(self, severity: ConflictSeverity) -> bool:
        """Whether a flexible request may accept a conflict of this severity."""
        return severity.rank <= self.max_accepted.rank

    def to_dict(self) -> dict[str, str]:
        return {rule: sev.value for rule, sev in self._rules.items()}
