"""
smartrepo structured logging.

Provides JSON and text formatting, context injection via contextvars,
and a keyword-friendly logger wrapper.
"""

from smartrepo.logging.config import (
    LogFormat,
    LogLevel,
    RepoLogger,
    configure_development_logging,
    configure_logging,
    get_logger,
)
from smartrepo.logging.context import (
    ContextFilter,
    LogContext,
    get_log_context,
    with_log_context,
)
from smartrepo.logging.formatters import JSONFormatter, TextFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "configure_development_logging",
    "get_logger",
    "RepoLogger",
    "LogLevel",
    "LogFormat",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
    # Context
    "ContextFilter",
    "LogContext",
    "get_log_context",
    "with_log_context",
]
