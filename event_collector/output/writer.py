"""Output writer: appends merged records to the rotating output file set."""

from __future__ import annotations

import os
import threading
from typing import Iterable

import structlog

from ..models import EventRecord
from .formatter import RecordFormatter
from .retention import RetentionPruner
from .rotation import RotationPolicy, RotationState

logger = structlog.get_logger(__name__)


class OutputWriteError(Exception):
    """Opening, writing, renaming or deleting an output file failed."""

    def __init__(self, path: str | None, cause: BaseException, written: int):
        self.path = path
        self.cause = cause
        self.written = written
        super().__init__(f"Error writing to file {path}: {cause}")


class OutputWriter:
    """Owns the open output file and its RotationState.

    Records must arrive in time order. For each record the policy names the
    target file; the writer closes and opens files as that name changes, writes a
    header into every file it creates, prunes date-named files after creating
    one, and rotates the numbered set when the size threshold is exceeded.
    """

    def __init__(self, pruner: RetentionPruner | None = None):
        self.state = RotationState()
        self.pruner = pruner or RetentionPruner()
        self._lock = threading.Lock()

    def write_batch(
        self,
        records: Iterable[EventRecord],
        policy: RotationPolicy,
        formatter: RecordFormatter,
        encoding: str = "utf-8",
    ) -> int:
        """Write records in order and return how many were written.

        Raises OutputWriteError on the first I/O failure; records written before
        it stay on disk and the open file is closed.
        """
        written = 0
        path = None
        with self._lock:
            try:
                for record in records:
                    path = policy.target_path(record.created_at)
                    self._prepare(path, policy, formatter, encoding)
                    self._append(formatter.format(record), encoding)
                    written += 1
                self.state.close()
            except OSError as e:
                failed_path = e.filename or path
                logger.error("Error writing to file", path=failed_path, error=str(e), written=written)
                self._close_after_error()
                raise OutputWriteError(failed_path, e, written) from e
        return written

    def close(self) -> None:
        with self._lock:
            self.state.close()

    def _prepare(self, path: str, policy: RotationPolicy, formatter: RecordFormatter, encoding: str) -> None:
        state = self.state
        if state.open_path != path or not state.is_open:
            state.close()
            if not os.path.exists(path):
                self._open(path, formatter, encoding, new_file=True)
                if policy.mode.is_dated:
                    self.pruner.prune_dated(policy.stem, policy.extension, policy.suffix_digits,
                                            policy.retention_count)
                return
            self._open(path, formatter, encoding, new_file=False)

        if policy.size_exceeded(state.open_size):
            logger.info("Output file reached size limit", path=path, size=state.open_size,
                        limit=policy.size_threshold_bytes)
            state.close()
            self.pruner.rotate_numbered(policy.stem, policy.extension, policy.retention_count)
            self._open(path, formatter, encoding, new_file=True)

    def _open(self, path: str, formatter: RecordFormatter, encoding: str, new_file: bool) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        state = self.state
        state.handle = open(path, "a", encoding=encoding, errors="replace", newline="")
        state.open_path = path
        if new_file:
            logger.info("Creating file", path=path)
            state.open_size = 0
            self._append(formatter.header(), encoding)
        else:
            logger.debug("Appending to file", path=path)
            state.open_size = os.path.getsize(path)

    def _append(self, line: str, encoding: str) -> None:
        text = line + "\n"
        self.state.handle.write(text)
        self.state.open_size += len(text.encode(encoding, errors="replace"))

    def _close_after_error(self) -> None:
        try:
            self.state.close()
        except OSError as e:
            logger.warning("Failed to close output file", error=str(e))
