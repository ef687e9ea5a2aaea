"""One collection cycle: resolve targets, query them, merge, write."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from ..config import CollectorConfig
from ..models import CycleReport, EventRecord, HostTally, Target
from ..output import OutputWriteError, OutputWriter, RecordFormatter, RotationPolicy
from ..sources.journal import JournalSourceClient
from ..sources.transport import TransportError
from .targets import TargetResolver

logger = structlog.get_logger(__name__)


class CycleInProgressError(RuntimeError):
    """A cycle was started while another one is still running."""


def default_client_factory(config: CollectorConfig) -> JournalSourceClient:
    return JournalSourceClient(timeout=config.query_timeout_seconds, ssh=config.ssh)


def merge_records(batches: Iterable[list[EventRecord]]) -> list[EventRecord]:
    """Concatenate batches in target order and sort by creation time.

    The sort is stable, so records sharing a timestamp keep host/log order.
    """
    merged: list[EventRecord] = []
    for batch in batches:
        merged.extend(batch)
    merged.sort(key=lambda record: record.created_at)
    return merged


@dataclass
class HostCollection:
    host: str
    records: list[EventRecord] = field(default_factory=list)
    tally: HostTally = field(default_factory=HostTally)
    failed_targets: list[Target] = field(default_factory=list)
    enumeration_error: Optional[str] = None
    cancelled: bool = False


class Collector:
    """Orchestrates collection cycles.

    The configuration may be replaced between cycles (``configure``); a running
    cycle keeps the configuration it started with.
    """

    def __init__(
        self,
        config: CollectorConfig,
        writer: Optional[OutputWriter] = None,
        client_factory: Callable[[CollectorConfig], JournalSourceClient] = default_client_factory,
    ):
        self.config = config
        self.writer = writer or OutputWriter()
        self.client_factory = client_factory
        self._cycle_lock = threading.Lock()

    def configure(self, config: CollectorConfig) -> None:
        self.config = config

    @property
    def in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def run_cycle(
        self,
        window_start: datetime,
        window_end: datetime,
        cancel_event: Optional[threading.Event] = None,
    ) -> CycleReport:
        """Collect records created in ``(window_start, window_end]`` and write them.

        Target and write failures are reported in the returned CycleReport rather
        than raised. Raises CycleInProgressError if a cycle is already running.
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgressError("A collection cycle is already running")
        try:
            return self._run_cycle(self.config, window_start, window_end, cancel_event)
        finally:
            self._cycle_lock.release()

    def _run_cycle(
        self,
        config: CollectorConfig,
        window_start: datetime,
        window_end: datetime,
        cancel_event: Optional[threading.Event],
    ) -> CycleReport:
        report = CycleReport(window_start=window_start, window_end=window_end)
        logger.debug("Querying logs", window_start=window_start.isoformat(), window_end=window_end.isoformat())

        with self.client_factory(config) as client:
            resolver = TargetResolver(client)
            hosts = resolver.hosts(config.hosts)
            workers = max(1, min(config.max_workers, len(hosts)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collect") as executor:
                futures = [
                    executor.submit(self._collect_host, client, resolver, host, config,
                                    window_start, window_end, cancel_event)
                    for host in hosts
                ]
                # results in host order, not completion order
                collections = [future.result() for future in futures]

        for collection in collections:
            report.per_host[collection.host] = collection.tally
            report.failed_targets.extend(collection.failed_targets)
            if collection.enumeration_error is not None:
                report.failed_hosts[collection.host] = collection.enumeration_error
            report.cancelled = report.cancelled or collection.cancelled

        merged = merge_records(c.records for c in collections)
        report.records_collected = len(merged)

        if merged:
            self._write(config, merged, report)

        self._log_summary(collections, report)
        return report

    def _collect_host(
        self,
        client: JournalSourceClient,
        resolver: TargetResolver,
        host: str,
        config: CollectorConfig,
        window_start: datetime,
        window_end: datetime,
        cancel_event: Optional[threading.Event],
    ) -> HostCollection:
        collection = HostCollection(host=host)
        if cancel_event is not None and cancel_event.is_set():
            collection.cancelled = True
            return collection

        try:
            logs = resolver.logs_for_host(host, config.logs)
        except TransportError as e:
            logger.error("Error connecting to host to retrieve log names", host=host, error=str(e))
            collection.enumeration_error = str(e)
            return collection

        for log_name in logs:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Cycle cancelled, skipping remaining logs", host=host)
                collection.cancelled = True
                break
            collection.tally.attempted += 1
            result = client.query(host, log_name, window_start, window_end, config.max_level)
            if result.ok:
                collection.tally.succeeded += 1
                collection.records.extend(result.records)
            else:
                collection.failed_targets.append(Target(host, log_name))
        return collection

    def _write(self, config: CollectorConfig, merged: list[EventRecord], report: CycleReport) -> None:
        policy = RotationPolicy.from_config(config)
        formatter = RecordFormatter(
            config.output_format,
            include_host=bool(config.hosts),
            csv_delimiter=config.csv_delimiter,
        )
        try:
            report.records_written = self.writer.write_batch(merged, policy, formatter, config.encoding)
        except OutputWriteError as e:
            report.records_written = e.written
            report.write_error = str(e)
            logger.error("Aborted writing for this cycle", path=e.path, error=str(e.cause),
                         written=e.written, remaining=len(merged) - e.written)

    def _log_summary(self, collections: list[HostCollection], report: CycleReport) -> None:
        for collection in collections:
            if collection.enumeration_error is not None:
                continue
            logger.info(
                "Processed host",
                host=collection.host,
                records=len(collection.records),
                logs_succeeded=collection.tally.succeeded,
                logs_failed=collection.tally.failed,
            )
        logger.info(
            "Collection cycle finished",
            records_collected=report.records_collected,
            records_written=report.records_written,
            failed_targets=len(report.failed_targets),
            failed_hosts=len(report.failed_hosts),
            cancelled=report.cancelled,
        )
