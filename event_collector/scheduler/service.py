"""Long-running collector service: one collection cycle per scheduler tick."""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..collector import Collector, CycleInProgressError
from ..config import CollectorConfig, ConfigError, ConfigProvider
from ..log_setup import configure_logging
from ..models import CycleReport
from .job_scheduler import JobScheduler

logger = structlog.get_logger(__name__)

JOB_ID = "collect_events"
HISTORY_SIZE = 20


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CollectorService:
    """Coordinates configuration reloads, the collection window and the scheduler.

    Each tick re-reads the configuration, applies interval and logging changes,
    and collects ``(previous window end, now]``. The first window starts when the
    service starts.
    """

    def __init__(
        self,
        provider: ConfigProvider,
        collector: Optional[Collector] = None,
        scheduler: Optional[JobScheduler] = None,
        clock: Callable[[], datetime] = utc_now,
        force_verbose: bool = False,
    ):
        self.provider = provider
        self.config = provider.reload()
        self.collector = collector or Collector(self.config)
        self.scheduler = scheduler or JobScheduler()
        self.clock = clock
        self.force_verbose = force_verbose

        self.last_check: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None
        self.history: List[Dict[str, Any]] = []
        self.fatal_error: Optional[str] = None
        self.paused = False
        self.cancel_event = threading.Event()
        self._stopped = asyncio.Event()
        # scheduled and on-demand ticks take turns so windows never overlap
        self._tick_lock = asyncio.Lock()

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.force_verbose else self.config.log_level

    async def start(self):
        """Start the scheduler and the periodic collection job."""
        self._stopped.clear()
        self.cancel_event.clear()
        self.last_check = self.clock()
        await self.scheduler.start()
        self.scheduler.add_interval_job(
            job_id=JOB_ID,
            func=self.tick,
            seconds=self.config.interval_seconds,
            description="Collect log records",
        )
        logger.info("Collector service started",
                    interval_seconds=self.config.interval_seconds,
                    output=self.config.resolved_output_path,
                    rotation=self.config.rotation.value)

    async def stop(self):
        """Stop scheduling; a running cycle stops after its current target."""
        self.cancel_event.set()
        await self.scheduler.stop()
        self.collector.writer.close()
        self._stopped.set()
        logger.info("Collector service stopped")

    async def wait_stopped(self):
        await self._stopped.wait()

    def pause(self) -> bool:
        if not self.scheduler.pause_job(JOB_ID):
            return False
        self.paused = True
        return True

    def resume(self) -> bool:
        if not self.scheduler.resume_job(JOB_ID):
            return False
        self.paused = False
        return True

    def _apply_config(self, config: CollectorConfig) -> None:
        previous = self.config
        self.config = config
        if (previous.log_level, previous.log_file) != (config.log_level, config.log_file):
            configure_logging(self.log_level, config.log_file)
        if previous.interval_seconds != config.interval_seconds:
            self.scheduler.reschedule_interval(JOB_ID, config.interval_seconds)
        self.collector.configure(config)

    async def tick(self) -> Optional[CycleReport]:
        """Run one collection cycle for the window since the previous tick."""
        async with self._tick_lock:
            return await self._tick()

    async def _tick(self) -> Optional[CycleReport]:
        try:
            config = self.provider.reload()
        except ConfigError as e:
            logger.critical("Cannot read configuration, stopping service", error=str(e))
            self.fatal_error = str(e)
            await self.stop()
            return None
        self._apply_config(config)

        window_start = self.last_check or self.clock()
        window_end = self.clock()
        try:
            report = await asyncio.to_thread(
                self.collector.run_cycle, window_start, window_end, self.cancel_event
            )
        except CycleInProgressError:
            logger.warning("Previous collection cycle still running, skipping tick")
            return None
        except Exception as e:
            logger.exception("Collection cycle failed", error=str(e))
            return None

        self.last_check = window_end
        self.last_report = report
        self.history.append(report.to_dict())
        del self.history[:-HISTORY_SIZE]
        return report

    def get_status(self) -> Dict[str, Any]:
        """Get overall service status."""
        return {
            "running": self.scheduler.running,
            "paused": self.paused,
            "cycle_in_progress": self.collector.in_progress,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "job": self.scheduler.get_job_status(JOB_ID),
            "fatal_error": self.fatal_error,
        }
