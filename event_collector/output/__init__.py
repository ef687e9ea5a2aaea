"""Output file handling: formatting, rotation and retention."""

from .formatter import RecordFormatter
from .retention import RetentionPruner
from .rotation import RotationPolicy, RotationState
from .writer import OutputWriteError, OutputWriter

__all__ = [
    "RecordFormatter",
    "RetentionPruner",
    "RotationPolicy",
    "RotationState",
    "OutputWriter",
    "OutputWriteError",
]
