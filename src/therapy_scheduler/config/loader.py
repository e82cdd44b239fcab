"""Unified configuration loader."""

from pathlib import Path

from .policy import SchedulingPolicy
from .severity import SeverityConfig


class ConfigLoader:
    """Unified loader for all scheduling configuration files."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize configuration loader.

        Args:
            config_dir: Path to directory containing configuration files.
                       Expected files (all optional):
                       - scheduling-policy.json
                       - conflict-severity.json
        """
        if config_dir is None:
            config_dir = Path("config")

        self.config_dir = Path(config_dir)

        self.policy = SchedulingPolicy.from_file(self._get_path("scheduling-policy.json"))
        self.severity = SeverityConfig(self._get_path("conflict-severity.json"))

    def _get_path(self, filename: str) -> Path | None:
        """Get path to config file if it exists."""
        path = self.config_dir / filename
        return path if path.exists() else None
