"""Configuration loaders for the scheduling engine."""

from .loader import ConfigLoader
from .policy import SchedulingPolicy
from .severity import SeverityConfig

__all__ = [
    "ConfigLoader",
    "SchedulingPolicy",
    "SeverityConfig",
]
