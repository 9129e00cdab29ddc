"""
Log formatters for smartrepo.

JSON for log aggregation in production, colorized text for development.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = ("collection", "operation", "scope", "request_id", "trace_id")


class JSONFormatter(logging.Formatter):
    """
    Single-line JSON log formatter.

    Fields included:
    - timestamp: ISO 8601 UTC timestamp
    - level, logger, message
    - collection, operation, scope, request_id, trace_id (if present)
    - exception: Exception info (if present)
    - extra: Any additional fields passed as keywords
    """

    STANDARD_FIELDS = {
        "timestamp",
        "level",
        "logger",
        "message",
        "exception",
        *CONTEXT_FIELDS,
    }

    # LogRecord attributes that are never emitted as extra
    EXCLUDE_FIELDS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "message",
        "taskName",
    }

    def __init__(self, include_extra: bool = True) -> None:
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_dict: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_dict[field] = value

        if record.exc_info:
            log_dict["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if self.include_extra:
            extra = {}
            for key, value in record.__dict__.items():
                if (
                    key not in self.EXCLUDE_FIELDS
                    and key not in self.STANDARD_FIELDS
                    and not key.startswith("_")
                ):
                    try:
                        json.dumps(value)
                        extra[key] = value
                    except (TypeError, ValueError):
                        extra[key] = str(value)
            if extra:
                log_dict["extra"] = extra

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable, optionally colorized formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as readable text."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level:8}{self.RESET}"
        else:
            level = f"{level:8}"

        context_parts = []
        for field in ("collection", "operation", "request_id"):
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")
        context = f" [{', '.join(context_parts)}]" if context_parts else ""

        log_line = f"{timestamp} {level} {record.name}{context}: {record.getMessage()}"

        if record.exc_info:
            log_line += "\n" + self.formatException(record.exc_info)

        return log_line
