"""
Structured logging for the dashboard service.

Log records are emitted as JSON objects on stderr; stdout is reserved for
JSON-RPC responses.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bizdash.config import LoggingConfig

ROOT_LOGGER_NAME = "bizdash"

# Plain-text format used when JSON output is disabled
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
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
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each entry carries ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``
    and ``message``, an ``exception`` field when exc_info is set, and every
    non-None field passed through the ``extra`` argument. With
    ``include_location`` each entry also names the emitting source line.
    """

    def __init__(self, include_location: bool = False) -> None:
        super().__init__()
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_entry["location"] = f"{record.module}:{record.lineno}"
            log_entry["function"] = record.funcName

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    stream: Any = None,
) -> logging.Logger:
    """
    Configure the ``bizdash`` logger hierarchy.

    Args:
        config: Optional LoggingConfig; when given it overrides ``level``
            and ``json_format``. ``debug_mode`` forces DEBUG and adds the
            source location to JSON entries.
        level: Log level used when no config is provided.
        json_format: Whether to emit JSON (default) or plain text.
        stream: Output stream, defaults to sys.stderr.

    Returns:
        The package root logger.

    Example:
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Server started", extra={"db_path": "/tmp/metrics.db"})
    """
    debug_mode = False
    if config is not None:
        debug_mode = config.debug_mode
        log_level = "DEBUG" if debug_mode else config.level.upper()
        json_format = config.json_format
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(getattr(logging, log_level, logging.INFO))
    if json_format:
        handler.setFormatter(JSONFormatter(include_location=debug_mode))
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    # Keep records out of the root logger to avoid duplicates
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the ``bizdash`` logger.

    Args:
        name: Typically ``__name__``; the ``bizdash.`` prefix is added when
            missing.

    Returns:
        A logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
