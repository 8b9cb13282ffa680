"""Structured logging configuration using structlog."""

import logging as stdlib_logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

# Keys rendered elsewhere in a run log line, or too noisy for it
_RUN_LOG_SKIP_KEYS = frozenset({"event", "timestamp", "level", "stack_info", "exc_info"})


def add_log_level(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the log level to the event dict."""
    if method_name == "warn":
        # Translate "warn" to "warning"
        event_dict["level"] = "warning"
    else:
        event_dict["level"] = method_name
    return event_dict


class RunLogWriter:
    """structlog processor that mirrors events into the append-only run log.

    Each event becomes one line of the form::

        [2026-10-18T07:30:00] portal_login_succeeded redirect_url=http://...

    The event dict is passed through unchanged so the stderr renderer still
    sees it.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def format_line(self, event_dict: EventDict, now: datetime | None = None) -> str:
        """Format one event as a run log line."""
        stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H:%M:%S")
        parts = [f"[{stamp}]", str(event_dict.get("event", ""))]
        for key, value in event_dict.items():
            if key in _RUN_LOG_SKIP_KEYS:
                continue
            parts.append(f"{key}={value}")
        return " ".join(parts)

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(self.format_line(event_dict) + "\n")
        return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structlog for portalkey.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, output JSON format. If False, use console-friendly format.
        log_file: Optional append-only run log that receives one line per event.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_file is not None:
        processors.append(RunLogWriter(log_file))

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            stdlib_logging.getLevelNamesMapping().get(level.upper(), stdlib_logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name. If not provided, uses the calling module's name.

    Returns:
        Configured structlog logger.
    """
    return structlog.get_logger(name)
