"""Structured logging setup for the collector's own log lines."""

import logging
import os
import sys
from typing import Optional, TextIO

import structlog

_log_file: Optional[TextIO] = None


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure structlog for console output, or append to ``log_file`` when given.

    Safe to call again when the configuration changes; loggers are not cached so
    a new level applies to existing module loggers.
    """
    global _log_file

    target: TextIO = sys.stdout
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        new_file = open(log_file, "a", encoding="utf-8", buffering=1)
        target = new_file
    else:
        new_file = None

    if _log_file is not None:
        _log_file.close()
    _log_file = new_file

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(colors=log_file is None and target.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=False,
    )
