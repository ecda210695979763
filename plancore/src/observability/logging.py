"""Structured logging configuration using structlog.

JSON output for services, console output for local development. Long text
values (user messages, task descriptions) are truncated so a single request
cannot flood the log stream.
"""

from __future__ import annotations

import sys
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.types import EventDict, WrappedLogger


MAX_VALUE_LENGTH = 240


class TextTruncator:
    """Processor that shortens oversized string values in log events."""

    def __init__(self, limit: int = MAX_VALUE_LENGTH) -> None:
        self.limit = limit

    def __call__(
        self,
        _logger: WrappedLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        return cast(EventDict, self._truncate(event_dict))

    def _truncate(self, data: MutableMapping[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, str) and len(value) > self.limit:
                result[key] = value[: self.limit - 1] + "…"
            elif isinstance(value, dict):
                result[key] = self._truncate(value)
            else:
                result[key] = value
        return result


_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure structured logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        format: ``"json"`` for machine-readable output, ``"console"`` for development
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        TextTruncator(),
    ]
    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to the given module name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


__all__ = ["TextTruncator", "get_logger", "setup_logging"]
