"""CP-SAT solver components."""

from .builder import ModelBuilder, SlotOption
from .extractor import SolutionExtractor

__all__ = [
    "ModelBuilder",
    "SlotOption",
    "SolutionExtractor",
]
