from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from event_collector.config import OutputFormat, RotationMode
from event_collector.models import EventRecord, Level
from event_collector.output.formatter import RecordFormatter
from event_collector.output.retention import RetentionPruner
from event_collector.output.rotation import RotationPolicy
from event_collector.output.writer import OutputWriteError, OutputWriter

BASE = datetime(2024, 3, 1, 10, 0, 0).astimezone()
FORMATTER = RecordFormatter(OutputFormat.TEXT, include_host=False)
HEADER = FORMATTER.header()


def make_records(count: int, start: datetime = BASE, step: timedelta = timedelta(seconds=1)) -> list[EventRecord]:
    return [
        EventRecord(
            created_at=start + step * i,
            host="box",
            log_name="app.service",
            id=1000 + i,
            provider="app",
            level=Level.INFORMATIONAL,
            body=f"message {i:03d}",
        )
        for i in range(count)
    ]


def lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def test_header_written_once_per_file(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    policy = RotationPolicy(RotationMode.NONE, str(out))

    assert OutputWriter().write_batch(make_records(2), policy, FORMATTER) == 2
    assert OutputWriter().write_batch(make_records(3), policy, FORMATTER) == 3

    content = lines(out)
    assert content.count(HEADER) == 1
    assert content[0] == HEADER
    assert len(content) == 6


def test_existing_file_gets_no_header(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    out.write_text("written by someone else\n", encoding="utf-8")

    OutputWriter().write_batch(make_records(1), RotationPolicy(RotationMode.NONE, str(out)), FORMATTER)

    content = lines(out)
    assert content[0] == "written by someone else"
    assert HEADER not in content


def test_creates_missing_directories(tmp_path: Path) -> None:
    out = tmp_path / "a" / "b" / "events.txt"
    OutputWriter().write_batch(make_records(1), RotationPolicy(RotationMode.NONE, str(out)), FORMATTER)
    assert out.exists()


def test_size_rotation_happens_once_at_the_crossing(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    records = make_records(20)
    row_bytes = len((FORMATTER.format(records[0]) + "\n").encode("utf-8"))
    header_bytes = len((HEADER + "\n").encode("utf-8"))
    threshold = header_bytes + row_bytes * 10 + row_bytes // 2
    policy = RotationPolicy(RotationMode.SIZE, str(out), size_threshold_bytes=threshold, retention_count=0)

    assert OutputWriter().write_batch(records, policy, FORMATTER) == 20

    rotated = tmp_path / "events-1.txt"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["events-1.txt", "events.txt"]
    first, second = lines(rotated), lines(out)
    assert first[0] == HEADER and second[0] == HEADER
    assert len(first) - 1 == 11
    assert len(second) - 1 == 9
    assert first[-1].endswith("message 010")
    assert second[1].endswith("message 011")
    size = rotated.stat().st_size
    assert size > threshold
    assert size - row_bytes <= threshold


def test_size_of_existing_file_is_read_on_open(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    out.write_text("x" * 500 + "\n", encoding="utf-8")
    policy = RotationPolicy(RotationMode.SIZE, str(out), size_threshold_bytes=100, retention_count=3)

    OutputWriter().write_batch(make_records(1), policy, FORMATTER)

    assert lines(tmp_path / "events-1.txt") == ["x" * 500]
    assert lines(out)[0] == HEADER
    assert len(lines(out)) == 2


def test_size_rotation_respects_retention(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    policy = RotationPolicy(RotationMode.SIZE, str(out), size_threshold_bytes=1, retention_count=2)

    OutputWriter().write_batch(make_records(5), policy, FORMATTER)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["events-1.txt", "events.txt"]
    assert lines(out)[-1].endswith("message 004")
    assert lines(tmp_path / "events-1.txt")[-1].endswith("message 003")


def test_daily_buckets_and_pruning(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    for day in ("20240225", "20240226", "20240227"):
        (tmp_path / f"events{day}.txt").write_text(HEADER + "\n", encoding="utf-8")
    policy = RotationPolicy(RotationMode.DAILY, str(out), retention_count=3)
    records = make_records(3, start=BASE.replace(hour=23), step=timedelta(hours=1))

    OutputWriter().write_batch(records, policy, FORMATTER)

    assert sorted(p.name for p in tmp_path.iterdir()) == ["events20240227.txt", "events20240301.txt", "events20240302.txt"]
    assert len(lines(tmp_path / "events20240301.txt")) == 2
    assert len(lines(tmp_path / "events20240302.txt")) == 3


def test_appending_to_existing_dated_file_does_not_prune(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    for day in ("20240228", "20240229", "20240301"):
        (tmp_path / f"events{day}.txt").write_text(HEADER + "\n", encoding="utf-8")
    policy = RotationPolicy(RotationMode.DAILY, str(out), retention_count=1)

    OutputWriter().write_batch(make_records(2), policy, FORMATTER)

    assert len(list(tmp_path.iterdir())) == 3
    assert len(lines(tmp_path / "events20240301.txt")) == 3


def test_hourly_and_monthly_names(tmp_path: Path) -> None:
    out = str(tmp_path / "events.txt")
    assert RotationPolicy(RotationMode.HOURLY, out).target_path(BASE).endswith("events2024030110.txt")
    assert RotationPolicy(RotationMode.MONTHLY, out).target_path(BASE).endswith("events202403.txt")
    assert RotationPolicy(RotationMode.SIZE, out).target_path(BASE) == out


class FailingPruner(RetentionPruner):
    def rotate_numbered(self, stem: str, extension: str, keep: int) -> list[str]:
        raise PermissionError(13, "Permission denied", f"{stem}{extension}")


def test_write_failure_keeps_earlier_records(tmp_path: Path) -> None:
    out = tmp_path / "events.txt"
    header_bytes = len((HEADER + "\n").encode("utf-8"))
    policy = RotationPolicy(RotationMode.SIZE, str(out), size_threshold_bytes=header_bytes + 1)
    writer = OutputWriter(pruner=FailingPruner())

    with pytest.raises(OutputWriteError) as excinfo:
        writer.write_batch(make_records(5), policy, FORMATTER)

    assert excinfo.value.written == 1
    assert excinfo.value.path == str(out)
    assert not writer.state.is_open
    assert len(lines(out)) == 2


def test_unopenable_output_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    policy = RotationPolicy(RotationMode.NONE, str(blocker / "events.txt"))

    with pytest.raises(OutputWriteError) as excinfo:
        OutputWriter().write_batch(make_records(2), policy, FORMATTER)

    assert excinfo.value.written == 0
