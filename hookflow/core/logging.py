# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Structured Logging — JSON lines with trace, owner and run context.

Records logged with ``extra={...}`` carry their context keys into the
JSON entry. Timestamps are ISO-8601 in UTC.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

SERVICE_NAME = "hookflow"

# Chatty per-request loggers of the HTTP client and the ORM
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class StructuredFormatter(logging.Formatter):
    """JSON log formatter with trace/owner/run context."""

    CONTEXT_KEYS = ("trace_id", "owner_type", "owner_id", "run_id", "schedule_id", "task_id")

    def formatTime(self, record: logging.LogRecord, datefmt=None) -> str:
        return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in self.CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value:
                entry[key] = str(value)
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger and quiet library chatter."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
