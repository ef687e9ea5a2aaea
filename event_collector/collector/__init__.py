"""Collection cycle orchestration."""

from .cycle import Collector, CycleInProgressError, merge_records
from .targets import TargetResolution, TargetResolver

__all__ = ["Collector", "CycleInProgressError", "merge_records", "TargetResolver", "TargetResolution"]
