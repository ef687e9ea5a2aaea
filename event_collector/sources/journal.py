"""Journal source client: reads records of one (host, unit) pair per query."""

from __future__ import annotations

import json
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from ..config import SSHConfig
from ..models import JOURNAL_PRIORITY_FOR_CEILING, EventRecord, Level, QueryResult
from .transport import ConnectError, Transport, TransportError, open_transport

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
RENDER_ERROR_PREFIX = "error reading record: "


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes as local time."""
    return value if value.tzinfo is not None else value.astimezone()


def render_message(value: Any) -> str:
    """
    Render a journal MESSAGE value as text.

    The journal exports non-UTF-8 messages as arrays of byte values and repeated
    fields as arrays of values. Raises on anything that cannot be rendered.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        if all(isinstance(v, int) for v in value):
            return bytes(value).decode("utf-8")
        if all(isinstance(v, str) for v in value):
            return "\n".join(value)
    raise TypeError(f"unsupported MESSAGE value of type {type(value).__name__}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        try:
            return render_message(value)
        except (TypeError, ValueError):
            return ""
    return str(value)


def _record_id(entry: dict[str, Any]) -> int:
    for key in ("SYSLOG_PID", "_PID"):
        try:
            return int(str(entry[key]).strip())
        except (KeyError, TypeError, ValueError):
            continue
    return 0


def parse_timestamp(raw: Any) -> datetime | None:
    """__REALTIME_TIMESTAMP is microseconds since the epoch, as a decimal string."""
    try:
        micros = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if micros <= 0:
        return None
    try:
        return EPOCH + timedelta(microseconds=micros)
    except OverflowError:
        return None


def record_from_entry(
    entry: dict[str, Any], host: str, log_name: str, now: datetime
) -> tuple[EventRecord, bool]:
    """Build an EventRecord from one exported journal entry.

    Returns the record and whether it carried its own timestamp. Records are
    never dropped: a missing timestamp falls back to ``now`` and a MESSAGE that
    cannot be rendered is replaced by a visible error text.
    """
    created_at = parse_timestamp(entry.get("__REALTIME_TIMESTAMP"))
    has_timestamp = created_at is not None

    try:
        body = render_message(entry.get("MESSAGE"))
    except (TypeError, ValueError) as e:
        body = f"{RENDER_ERROR_PREFIX}{e}"

    record = EventRecord(
        created_at=created_at or now,
        host=host,
        log_name=log_name,
        id=_record_id(entry),
        provider=_text(entry.get("SYSLOG_IDENTIFIER") or entry.get("_COMM")),
        level=Level.from_journal_priority(entry.get("PRIORITY")),
        body=body,
    )
    return record, has_timestamp


def query_command(log_name: str, window_start: datetime, window_end: datetime, max_level: Level | None) -> list[str]:
    # journalctl works on whole seconds; widen the range and filter exactly afterwards.
    since = math.floor(as_aware(window_start).timestamp())
    until = math.ceil(as_aware(window_end).timestamp()) + 1
    command = [
        "journalctl",
        "--output=json",
        "--no-pager",
        "--quiet",
        f"--unit={log_name}",
        f"--since=@{since}",
        f"--until=@{until}",
    ]
    if max_level is not None:
        command.append(f"--priority={JOURNAL_PRIORITY_FOR_CEILING[max_level]}")
    return command


LIST_LOGS_COMMAND = ["journalctl", "--field=_SYSTEMD_UNIT", "--no-pager", "--quiet"]


class JournalSourceClient:
    """Queries journals on local and remote hosts.

    One transport is opened per host and reused for every query against that host
    until ``close()``. A host whose connection failed is not retried until the
    client is closed, so a dead host costs one connect timeout per cycle.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        ssh: SSHConfig | None = None,
        transport_factory: Callable[[str, float, SSHConfig], Transport] = open_transport,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.timeout = timeout
        self.ssh = ssh or SSHConfig()
        self._transport_factory = transport_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._transports: dict[str, Transport] = {}
        self._connect_errors: dict[str, str] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        with self._lock:
            transports = list(self._transports.values())
            self._transports.clear()
            self._connect_errors.clear()
        for transport in transports:
            try:
                transport.close()
            except (TransportError, OSError) as e:
                logger.warning("Failed to close transport", host=transport.host, error=str(e))

    def _run(self, host: str, argv: list[str]) -> str:
        with self._lock:
            if host in self._connect_errors:
                raise ConnectError(self._connect_errors[host])
            transport = self._transports.get(host)
            if transport is None:
                transport = self._transport_factory(host, self.timeout, self.ssh)
                self._transports[host] = transport
        try:
            return transport.run(argv)
        except ConnectError as e:
            with self._lock:
                self._connect_errors[host] = str(e)
            raise

    def list_logs(self, host: str) -> list[str]:
        """Return the sorted log names available on a host. Raises TransportError."""
        output = self._run(host, LIST_LOGS_COMMAND)
        names = {line.strip() for line in output.splitlines() if line.strip()}
        logger.debug("Enumerated logs", host=host, count=len(names))
        return sorted(names)

    def query(
        self,
        host: str,
        log_name: str,
        window_start: datetime,
        window_end: datetime,
        max_level: Level | None = None,
    ) -> QueryResult:
        """Read records of one log created in ``(window_start, window_end]``.

        Never raises for target failures; they come back as ``ok=False``.
        """
        start, end = as_aware(window_start), as_aware(window_end)
        try:
            output = self._run(host, query_command(log_name, start, end, max_level))
        except TransportError as e:
            logger.error("Error opening log", host=host, log=log_name, error=str(e))
            return QueryResult.failed(str(e))

        now = self._clock()
        records: list[EventRecord] = []
        render_errors = 0
        for line in output.splitlines():
            line = line.strip()
            if not line or line.startswith("-- "):
                continue
            try:
                entry = json.loads(line)
                if not isinstance(entry, dict):
                    raise ValueError(f"expected a JSON object, got {type(entry).__name__}")
                record, has_timestamp = record_from_entry(entry, host, log_name, now)
            except Exception as e:
                # one unreadable entry must not cost the rest of the log
                render_errors += 1
                records.append(EventRecord(
                    created_at=now, host=host, log_name=log_name, id=0, provider="",
                    level=Level.UNKNOWN, body=f"{RENDER_ERROR_PREFIX}{e}",
                ))
                continue

            if record.body.startswith(RENDER_ERROR_PREFIX):
                render_errors += 1
            if has_timestamp and not (start < record.created_at <= end):
                continue
            if not record.level.within(max_level):
                continue
            records.append(record)

        if render_errors:
            logger.warning("Records with unreadable content", host=host, log=log_name, count=render_errors)
        logger.debug("Processed log", host=host, log=log_name, entries=len(records))
        return QueryResult(records=records, ok=True)
