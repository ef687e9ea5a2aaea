from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from event_collector.collector import CycleInProgressError
from event_collector.config import ConfigProvider
from event_collector.models import CycleReport
from event_collector.output import OutputWriter
from event_collector.scheduler import CollectorService, JobScheduler

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCollector:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.windows: list[tuple[datetime, datetime]] = []
        self.configs = []
        self.writer = OutputWriter()
        self.in_progress = False

    def configure(self, config) -> None:
        self.configs.append(config)

    def run_cycle(self, window_start, window_end, cancel_event=None) -> CycleReport:
        if self.error is not None:
            raise self.error
        self.windows.append((window_start, window_end))
        return CycleReport(window_start=window_start, window_end=window_end, records_written=len(self.windows))


class Clock:
    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=5)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


def make_service(tmp_path: Path, text: str = "interval_seconds: 300\n", collector=None, clock=None) -> CollectorService:
    path = tmp_path / "collector.yaml"
    path.write_text(text, encoding="utf-8")
    return CollectorService(
        ConfigProvider(str(path)),
        collector=collector or FakeCollector(),
        clock=clock or Clock(),
    )


@pytest.mark.asyncio
async def test_tick_advances_window(tmp_path: Path) -> None:
    collector = FakeCollector()
    service = make_service(tmp_path, collector=collector)
    service.last_check = T0 - timedelta(minutes=5)

    first = await service.tick()
    second = await service.tick()

    assert collector.windows == [
        (T0 - timedelta(minutes=5), T0),
        (T0, T0 + timedelta(minutes=5)),
    ]
    assert service.last_check == T0 + timedelta(minutes=5)
    assert service.last_report is second
    assert first.records_written == 1
    assert len(service.history) == 2
    assert len(collector.configs) == 2


class SlowCollector(FakeCollector):
    def run_cycle(self, window_start, window_end, cancel_event=None) -> CycleReport:
        time.sleep(0.05)
        return super().run_cycle(window_start, window_end, cancel_event)


@pytest.mark.asyncio
async def test_concurrent_ticks_collect_disjoint_windows(tmp_path: Path) -> None:
    collector = SlowCollector()
    service = make_service(tmp_path, collector=collector)
    service.last_check = T0 - timedelta(minutes=5)

    await asyncio.gather(service.tick(), service.tick())

    assert collector.windows == [
        (T0 - timedelta(minutes=5), T0),
        (T0, T0 + timedelta(minutes=5)),
    ]
    assert service.last_check == T0 + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_overlapping_tick_keeps_window(tmp_path: Path) -> None:
    service = make_service(tmp_path, collector=FakeCollector(CycleInProgressError("busy")))
    service.last_check = T0

    assert await service.tick() is None
    assert service.last_check == T0


@pytest.mark.asyncio
async def test_unexpected_cycle_failure_keeps_window(tmp_path: Path) -> None:
    service = make_service(tmp_path, collector=FakeCollector(RuntimeError("bug")))
    service.last_check = T0

    assert await service.tick() is None
    assert service.last_check == T0
    assert service.fatal_error is None


@pytest.mark.asyncio
async def test_unreadable_config_stops_service(tmp_path: Path) -> None:
    collector = FakeCollector()
    service = make_service(tmp_path, collector=collector)
    (tmp_path / "collector.yaml").unlink()

    assert await service.tick() is None

    assert service.fatal_error is not None
    assert collector.windows == []
    await service.wait_stopped()


@pytest.mark.asyncio
async def test_start_schedules_job_and_applies_interval_changes(tmp_path: Path) -> None:
    service = make_service(tmp_path, "interval_seconds: 300\n")
    await service.start()
    try:
        assert service.last_check == T0
        assert service.get_status()["job"]["interval_seconds"] == 300

        (tmp_path / "collector.yaml").write_text("interval_seconds: 60\n", encoding="utf-8")
        await service.tick()

        status = service.get_status()
        assert status["job"]["interval_seconds"] == 60
        assert status["running"] is True
        assert status["last_report"]["records_written"] == 1
    finally:
        await service.stop()
    assert service.get_status()["running"] is False


@pytest.mark.asyncio
async def test_pause_and_resume(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    assert service.pause() is False

    await service.start()
    try:
        assert service.pause() is True
        assert service.get_status()["paused"] is True
        assert service.get_status()["job"]["paused"] is True
        assert service.resume() is True
        assert service.get_status()["job"]["next_run"] is not None
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_job_scheduler_interval_jobs() -> None:
    scheduler = JobScheduler()
    calls = []

    async def job() -> None:
        calls.append(1)

    await scheduler.start()
    try:
        scheduler.add_interval_job("collect", job, seconds=300, description="Collect")
        status = scheduler.get_job_status("collect")
        assert status["interval_seconds"] == 300
        assert status["name"] == "Collect"
        assert status["paused"] is False

        assert scheduler.reschedule_interval("collect", 300) is False
        assert scheduler.reschedule_interval("collect", 120) is True
        assert scheduler.get_job_status("collect")["interval_seconds"] == 120

        assert scheduler.remove_job("collect") is True
        assert scheduler.get_job_status("collect") is None
        assert scheduler.remove_job("collect") is False
    finally:
        await scheduler.stop()
    assert calls == []
