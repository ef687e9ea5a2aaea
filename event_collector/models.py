"""Data model shared by the sources, the collector and the output writer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any


class Level(IntEnum):
    """Record severity, most severe first. ``UNKNOWN`` marks unclassified records."""

    UNKNOWN = 0
    CRITICAL = 1
    ERROR = 2
    WARNING = 3
    INFORMATIONAL = 4
    VERBOSE = 5

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_journal_priority(cls, raw: Any) -> Level:
        """Map a syslog/journal PRIORITY value (0-7) onto a Level."""
        try:
            priority = int(str(raw).strip())
        except (TypeError, ValueError):
            return cls.UNKNOWN
        if priority < 0 or priority > 7:
            return cls.UNKNOWN
        if priority <= 2:
            return cls.CRITICAL
        if priority == 3:
            return cls.ERROR
        if priority == 4:
            return cls.WARNING
        if priority <= 6:
            return cls.INFORMATIONAL
        return cls.VERBOSE

    @classmethod
    def parse_ceiling(cls, raw: Any) -> Level | None:
        """
        Parse a configured severity ceiling.

        Accepts level names ("warning"), numbers 1-5, and 0/"all"/"" for unbounded.
        Raises ValueError for anything else.
        """
        if raw is None or isinstance(raw, cls):
            return raw
        s = str(raw).strip().lower()
        if s in {"", "0", "all", "none", "unbounded"}:
            return None
        if s.isdigit():
            value = int(s)
            if 1 <= value <= 5:
                return cls(value)
            raise ValueError(f"severity ceiling out of range: {raw}")
        aliases = {"info": "informational", "err": "error", "warn": "warning", "crit": "critical", "debug": "verbose"}
        s = aliases.get(s, s)
        for level in cls:
            if level is not cls.UNKNOWN and level.name.lower() == s:
                return level
        raise ValueError(f"unknown severity ceiling: {raw}")

    def within(self, ceiling: Level | None) -> bool:
        """True when a record of this level passes the given severity ceiling."""
        if ceiling is None:
            return True
        if self is Level.UNKNOWN:
            return False
        return self <= ceiling


# Highest journal priority that can still map to a level at or below each ceiling.
JOURNAL_PRIORITY_FOR_CEILING: dict[Level, int] = {
    Level.CRITICAL: 2,
    Level.ERROR: 3,
    Level.WARNING: 4,
    Level.INFORMATIONAL: 6,
    Level.VERBOSE: 7,
}


@dataclass(frozen=True)
class EventRecord:
    """A single normalized log record."""

    created_at: datetime
    host: str
    log_name: str
    id: int
    provider: str
    level: Level
    body: str


@dataclass(frozen=True, order=True)
class Target:
    host: str
    log_name: str


@dataclass(frozen=True)
class QueryResult:
    """Outcome of querying one target. ``ok`` is False when the target could not be read."""

    records: list[EventRecord]
    ok: bool
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> QueryResult:
        return cls(records=[], ok=False, error=error)


@dataclass
class HostTally:
    succeeded: int = 0
    attempted: int = 0

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded


@dataclass
class CycleReport:
    """What one collection cycle did; returned to the scheduler/CLI for status reporting."""

    window_start: datetime
    window_end: datetime
    records_collected: int = 0
    records_written: int = 0
    per_host: dict[str, HostTally] = field(default_factory=dict)
    failed_targets: list[Target] = field(default_factory=list)
    failed_hosts: dict[str, str] = field(default_factory=dict)
    write_error: str | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.write_error is None and not self.failed_targets and not self.failed_hosts

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "records_collected": self.records_collected,
            "records_written": self.records_written,
            "per_host": {
                host: {"logs_succeeded": t.succeeded, "logs_attempted": t.attempted}
                for host, t in self.per_host.items()
            },
            "failed_targets": [{"host": t.host, "log": t.log_name} for t in self.failed_targets],
            "failed_hosts": dict(self.failed_hosts),
            "write_error": self.write_error,
            "cancelled": self.cancelled,
        }
