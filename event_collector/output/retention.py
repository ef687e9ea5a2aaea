"""Retention of output files for the date-named and the numbered rotation disciplines."""

from __future__ import annotations

import os
import re

import structlog

logger = structlog.get_logger(__name__)


def numbered_path(stem: str, extension: str, number: int) -> str:
    return f"{stem}-{number}{extension}"


class RetentionPruner:
    """Deletes and renames superseded output files.

    OSErrors are not handled here: a failed rename or delete aborts the writer's
    current batch like any other write failure.
    """

    def dated_files(self, stem: str, extension: str, digits: int) -> list[str]:
        """Existing ``<stem><digits><extension>`` files, oldest first."""
        directory = os.path.dirname(stem) or "."
        base = os.path.basename(stem)
        if not os.path.isdir(directory):
            return []

        # A prefix/suffix listing also returns unrelated files sharing the prefix
        # (e.g. "events-old.txt"), so names are checked against the exact width.
        pattern = re.compile(re.escape(base) + "[0-9]{%d}" % digits + re.escape(extension))
        candidates = [
            name for name in os.listdir(directory)
            if name.startswith(base) and name.endswith(extension)
        ]
        matches = sorted(name for name in candidates if pattern.fullmatch(name))
        return [os.path.join(directory, name) for name in matches]

    def prune_dated(self, stem: str, extension: str, digits: int, keep: int) -> list[str]:
        """Delete the oldest date-named files until ``keep`` remain. ``keep <= 0`` keeps everything."""
        if keep <= 0:
            return []

        files = self.dated_files(stem, extension, digits)
        surplus = len(files) - keep
        if surplus <= 0:
            return []

        deleted = []
        for path in files[:surplus]:
            logger.info("Deleting file", path=path)
            os.remove(path)
            deleted.append(path)
        return deleted

    def rotate_numbered(self, stem: str, extension: str, keep: int) -> list[str]:
        """Shift ``<stem>-<n><ext>`` up by one and move the current file to ``-1``.

        ``keep`` counts the current file too, so a numbered file is only kept when
        its new number stays below ``keep``. ``keep <= 0`` never deletes.
        Returns the deleted paths.
        """
        highest = 0
        while os.path.exists(numbered_path(stem, extension, highest + 1)):
            highest += 1

        deleted = []
        # highest first, so no rename lands on a file that has not moved yet
        for number in range(highest, 0, -1):
            source = numbered_path(stem, extension, number)
            if keep <= 0 or number + 1 < keep:
                target = numbered_path(stem, extension, number + 1)
                logger.info("Renaming file", source=source, target=target)
                os.rename(source, target)
            else:
                logger.info("Deleting file", path=source)
                os.remove(source)
                deleted.append(source)

        current = f"{stem}{extension}"
        if os.path.exists(current):
            if keep == 1:
                logger.info("Deleting file", path=current)
                os.remove(current)
                deleted.append(current)
            else:
                target = numbered_path(stem, extension, 1)
                logger.info("Renaming file", source=current, target=target)
                os.rename(current, target)
        return deleted
