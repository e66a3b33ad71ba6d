"""JSONL log formatting with ISO 8601 timestamps."""

from __future__ import annotations

__all__ = ["ISO8601Formatter"]

import json
import logging
from datetime import datetime, timezone


class ISO8601Formatter(logging.Formatter):
    """Formatter emitting one JSON object per line with a UTC timestamp.

    Format: {"time": "YYYY-MM-DDTHH:MM:SS.sssZ", "level": ..., "logger": ..., ...}

    Dict messages are merged into the entry (structured logging), anything
    else is stored under "message".
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a JSONL entry.

        Args:
            record: The log record to format

        Returns:
            str: JSON-formatted log entry with timestamp
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

        log_entry = {
            "time": timestamp,
            "level": record.levelname,
            "logger": record.name,
            **log_data,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)
