"""
Logging context management for smartrepo.

Repositories push their collection name and scope into a context variable
so every record emitted during an operation carries them.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "smartrepo_log_context",
    default=None,
)


@dataclass
class LogContext:
    """Fields included in every log record within a scope."""

    collection: str | None = None
    operation: str | None = None
    scope: Mapping[str, Any] | None = None
    request_id: str | None = None
    trace_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary of non-None values."""
        result: dict[str, Any] = {}
        if self.collection is not None:
            result["collection"] = self.collection
        if self.operation is not None:
            result["operation"] = self.operation
        if self.scope:
            result["scope"] = dict(self.scope)
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.trace_id is not None:
            result["trace_id"] = self.trace_id
        result.update(self.extra)
        return result


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current log context."""
    ctx = _log_context.get()
    return ctx.copy() if ctx else {}


@contextmanager
def with_log_context(
    context: LogContext | dict[str, Any] | None = None,
    **kwargs: Any,
) -> Iterator[None]:
    """
    Set log context fields for the duration of a block.

    Fields are merged over the enclosing context and restored on exit.

    Example:
        with with_log_context(collection="users", operation="find_page"):
            logger.debug("Fetched page")  # Includes collection and operation
    """
    previous = _log_context.get()

    new_context = previous.copy() if previous else {}
    if context is not None:
        new_context.update(context.to_dict() if isinstance(context, LogContext) else context)
    new_context.update({k: v for k, v in kwargs.items() if v is not None})
    token = _log_context.set(new_context)

    try:
        yield
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Logging filter that copies context fields onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
