"""Rotation policy: which output file a record belongs to, and when to rotate by size."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import TextIO

from ..config import CollectorConfig, RotationMode

# Lexicographic order of these suffixes is chronological order.
SUFFIX_FORMATS: dict[RotationMode, str] = {
    RotationMode.HOURLY: "%Y%m%d%H",
    RotationMode.DAILY: "%Y%m%d",
    RotationMode.MONTHLY: "%Y%m",
}

SUFFIX_DIGITS: dict[RotationMode, int] = {
    RotationMode.HOURLY: 10,
    RotationMode.DAILY: 8,
    RotationMode.MONTHLY: 6,
}


def split_output_path(path: str) -> tuple[str, str]:
    """Split ``logs/events.txt`` into ``("logs/events", ".txt")``."""
    return os.path.splitext(path)


@dataclass(frozen=True)
class RotationPolicy:
    mode: RotationMode
    output_path: str
    size_threshold_bytes: int = 0
    retention_count: int = 0

    @classmethod
    def from_config(cls, config: CollectorConfig) -> RotationPolicy:
        return cls(
            mode=config.rotation,
            output_path=config.resolved_output_path,
            size_threshold_bytes=config.rotation_size_bytes,
            retention_count=config.retention_count,
        )

    @property
    def stem(self) -> str:
        return split_output_path(self.output_path)[0]

    @property
    def extension(self) -> str:
        return split_output_path(self.output_path)[1]

    @property
    def suffix_digits(self) -> int:
        return SUFFIX_DIGITS[self.mode]

    def target_path(self, created_at: datetime) -> str:
        """Output file for a record created at ``created_at`` (bucketed in local time)."""
        fmt = SUFFIX_FORMATS.get(self.mode)
        if fmt is None:
            return self.output_path
        return f"{self.stem}{created_at.astimezone().strftime(fmt)}{self.extension}"

    def size_exceeded(self, current_size: int) -> bool:
        return self.mode is RotationMode.SIZE and self.size_threshold_bytes > 0 and current_size > self.size_threshold_bytes


@dataclass
class RotationState:
    """The writer's open file: path, handle and running byte count."""

    open_path: str | None = None
    open_size: int = 0
    handle: TextIO | None = None

    @property
    def is_open(self) -> bool:
        return self.handle is not None

    def close(self) -> None:
        handle, self.handle = self.handle, None
        self.open_path = None
        self.open_size = 0
        if handle is not None:
            handle.close()
