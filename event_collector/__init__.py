"""Periodic log record collection into a merged, rotated output file."""

__version__ = "0.1.0"
