from __future__ import annotations

from pathlib import Path

import pytest

from event_collector.output.retention import RetentionPruner, numbered_path


def touch(path: Path, text: str = "") -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir())


def test_dated_files_match_exact_width(tmp_path: Path) -> None:
    for name in ["ev20240101.txt", "ev20240102.txt", "ev-old.txt", "ev2024010.txt", "ev20240103.csv", "ev.txt", "other20240101.txt"]:
        touch(tmp_path / name)

    files = RetentionPruner().dated_files(str(tmp_path / "ev"), ".txt", 8)

    assert [Path(f).name for f in files] == ["ev20240101.txt", "ev20240102.txt"]


def test_prune_dated_keeps_newest(tmp_path: Path) -> None:
    for day in range(1, 7):
        touch(tmp_path / f"ev202401{day:02d}.txt")
    touch(tmp_path / "ev-notes.txt")

    deleted = RetentionPruner().prune_dated(str(tmp_path / "ev"), ".txt", 8, keep=3)

    assert [Path(p).name for p in deleted] == ["ev20240101.txt", "ev20240102.txt", "ev20240103.txt"]
    assert names(tmp_path) == ["ev-notes.txt", "ev20240104.txt", "ev20240105.txt", "ev20240106.txt"]


def test_prune_dated_unbounded(tmp_path: Path) -> None:
    for month in range(1, 5):
        touch(tmp_path / f"ev2024{month:02d}.txt")
    assert RetentionPruner().prune_dated(str(tmp_path / "ev"), ".txt", 6, keep=0) == []
    assert len(names(tmp_path)) == 4


def test_prune_dated_missing_directory(tmp_path: Path) -> None:
    assert RetentionPruner().prune_dated(str(tmp_path / "nope" / "ev"), ".txt", 8, keep=1) == []


def test_numbered_path() -> None:
    assert numbered_path("logs/ev", ".txt", 3) == "logs/ev-3.txt"


def test_rotate_numbered_keep_two(tmp_path: Path) -> None:
    stem = str(tmp_path / "ev")
    touch(tmp_path / "ev.txt", "current")
    touch(tmp_path / "ev-1.txt", "older")

    deleted = RetentionPruner().rotate_numbered(stem, ".txt", keep=2)

    assert [Path(p).name for p in deleted] == ["ev-1.txt"]
    assert names(tmp_path) == ["ev-1.txt"]
    assert (tmp_path / "ev-1.txt").read_text(encoding="utf-8") == "current"


def test_rotate_numbered_unbounded_shifts_everything(tmp_path: Path) -> None:
    stem = str(tmp_path / "ev")
    touch(tmp_path / "ev.txt", "c")
    touch(tmp_path / "ev-1.txt", "1")
    touch(tmp_path / "ev-2.txt", "2")

    assert RetentionPruner().rotate_numbered(stem, ".txt", keep=0) == []

    assert names(tmp_path) == ["ev-1.txt", "ev-2.txt", "ev-3.txt"]
    assert (tmp_path / "ev-1.txt").read_text(encoding="utf-8") == "c"
    assert (tmp_path / "ev-3.txt").read_text(encoding="utf-8") == "2"


def test_rotate_numbered_keep_one_deletes_current(tmp_path: Path) -> None:
    touch(tmp_path / "ev.txt")
    RetentionPruner().rotate_numbered(str(tmp_path / "ev"), ".txt", keep=1)
    assert names(tmp_path) == []


def test_shrinking_retention_prunes_excess(tmp_path: Path) -> None:
    stem = str(tmp_path / "ev")
    touch(tmp_path / "ev.txt", "c")
    for n in range(1, 5):
        touch(tmp_path / f"ev-{n}.txt", str(n))

    deleted = RetentionPruner().rotate_numbered(stem, ".txt", keep=3)

    assert sorted(Path(p).name for p in deleted) == ["ev-2.txt", "ev-3.txt", "ev-4.txt"]
    assert names(tmp_path) == ["ev-1.txt", "ev-2.txt"]
    assert (tmp_path / "ev-1.txt").read_text(encoding="utf-8") == "c"
    assert (tmp_path / "ev-2.txt").read_text(encoding="utf-8") == "1"


def test_rotation_errors_propagate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    touch(tmp_path / "ev.txt")

    def refuse(src: str, dst: str) -> None:
        raise PermissionError(13, "Permission denied", src)

    monkeypatch.setattr("event_collector.output.retention.os.rename", refuse)
    with pytest.raises(OSError):
        RetentionPruner().rotate_numbered(str(tmp_path / "ev"), ".txt", keep=3)
