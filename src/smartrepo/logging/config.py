"""
Logging configuration for smartrepo.

Provides easy setup of structured logging for different environments.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Any, TextIO

from smartrepo.logging.context import ContextFilter
from smartrepo.logging.formatters import JSONFormatter, TextFormatter

ROOT_LOGGER = "smartrepo"


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log format options."""

    JSON = "json"
    TEXT = "text"


class RepoLogger:
    """
    Logger wrapper that accepts structured fields as keyword arguments.

    Example:
        logger = RepoLogger("smartrepo.repos.mongo")
        logger.debug("Fetched page", collection="users", rows=25)
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool | BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, msg, *args, exc_info=exc_info, extra=kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a debug message."""
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log an info message."""
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a warning message."""
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(
        self,
        msg: str,
        *args: Any,
        exc_info: bool | BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an error message."""
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log an exception message with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


def get_logger(name: str) -> RepoLogger:
    """
    Get a smartrepo logger by name.

    Args:
        name: Logger name (typically __name__)
    """
    return RepoLogger(name)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    format: LogFormat | str = LogFormat.JSON,
    output: TextIO | None = None,
    include_context: bool = True,
    use_colors: bool = True,
) -> None:
    """
    Configure smartrepo logging.

    Installs a single stream handler on the "smartrepo" logger. Call once at
    application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format (json for production, text for development)
        output: Output stream (defaults to stderr)
        include_context: Whether to inject context fields into records
        use_colors: Whether to use colors in text format (ignored for JSON)

    Example:
        configure_logging(level="DEBUG", format="text")
    """
    if isinstance(level, str):
        level = LogLevel(level.upper())

    if isinstance(format, str):
        format = LogFormat(format.lower())

    if output is None:
        output = sys.stderr

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, level.value))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(output)
    handler.setLevel(getattr(logging, level.value))

    if format == LogFormat.JSON:
        formatter: logging.Formatter = JSONFormatter(include_extra=True)
    else:
        formatter = TextFormatter(use_colors=use_colors)
    handler.setFormatter(formatter)

    if include_context:
        handler.addFilter(ContextFilter())

    root_logger.addHandler(handler)
    root_logger.propagate = False


def configure_development_logging(level: LogLevel | str = LogLevel.DEBUG) -> None:
    """Colorized text logging to stderr with context injection."""
    configure_logging(
        level=level,
        format=LogFormat.TEXT,
        include_context=True,
        use_colors=True,
    )
