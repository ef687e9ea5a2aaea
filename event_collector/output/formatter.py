"""Row formatting for text (tab separated) and CSV output files."""

from __future__ import annotations

import csv
import io

from ..config import OutputFormat
from ..models import EventRecord

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class RecordFormatter:
    """Renders the header row and one row per record.

    The host column is only present when ``include_host`` is set, which the
    collector does when an explicit host list is configured.
    """

    def __init__(self, output_format: OutputFormat, include_host: bool, csv_delimiter: str = ","):
        self.output_format = output_format
        self.include_host = include_host
        self.csv_delimiter = csv_delimiter

    def columns(self) -> list[str]:
        columns = ["time created", "log", "id", "provider", "level", "description"]
        if self.include_host:
            columns.insert(1, "host")
        return columns

    def header(self) -> str:
        return self._join(self.columns())

    def format(self, record: EventRecord) -> str:
        fields = [
            record.created_at.astimezone().strftime(TIME_FORMAT),
            record.log_name,
            str(record.id),
            record.provider,
            record.level.display_name,
        ]
        if self.include_host:
            fields.insert(1, record.host)

        body = record.body.replace("\r\n", "\n")
        if self.output_format is OutputFormat.TEXT:
            # continuation lines are indented so every row still starts with a timestamp
            body = body.replace("\n", "\n\t")
        fields.append(body)
        return self._join(fields)

    def _join(self, fields: list[str]) -> str:
        if self.output_format is OutputFormat.CSV:
            buf = io.StringIO()
            writer = csv.writer(buf, delimiter=self.csv_delimiter, quoting=csv.QUOTE_ALL, lineterminator="")
            writer.writerow(fields)
            return buf.getvalue()
        return "\t".join(fields)
