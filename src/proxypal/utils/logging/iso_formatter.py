"""Log formatting utilities for JSONL and console output.

Structured log calls pass a dict as the message:
    _logger.info({"event": "process_started", "message": "...", "pid": 123})

ISO8601Formatter renders those as one JSON object per line with a UTC
timestamp; ConsoleFormatter renders the human-readable part only.
"""

from __future__ import annotations

__all__ = ["ConsoleFormatter", "ISO8601Formatter"]

import json
import logging
from datetime import datetime, timezone


class ISO8601Formatter(logging.Formatter):
    """One JSON object per record, stamped "2026-01-15T10:48:37.123Z" (UTC).

    Dict messages are merged into the object; anything else becomes its
    "message" field. Values json cannot encode are rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, object] = {
            "time": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            entry.update(record.msg)
        else:
            entry["message"] = record.getMessage()
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"
