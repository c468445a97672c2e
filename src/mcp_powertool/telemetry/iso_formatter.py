"""JSONL log formatting with ISO 8601 timestamps."""

from __future__ import annotations

__all__ = ["ISO8601Formatter"]

import json
import logging
from datetime import datetime, timezone


class ISO8601Formatter(logging.Formatter):
    """Formatter emitting one JSON object per record with a UTC "time" field.

    Format: YYYY-MM-DDTHH:MM:SS.sssZ
    Example: 2026-03-04T10:48:37.123Z
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSONL with ISO 8601 timestamp.

        Args:
            record: The log record to format.

        Returns:
            str: JSON-formatted log entry with timestamp first.
        """
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        if isinstance(record.msg, dict):
            log_data = record.msg
        else:
            log_data = {"message": record.getMessage()}

        log_entry = {"time": timestamp, "level": record.levelname, **log_data}
        if record.exc_info and record.exc_info[1] is not None:
            log_entry.setdefault("error", str(record.exc_info[1]))
        return json.dumps(log_entry, default=str)
