"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

# Chatty at INFO; the ingestion events already say what matters.
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler", "tzlocal")

# Free-text fields copied from feeds; long headlines would swamp the log.
TITLE_FIELDS = ("title", "article_title")


class TruncateTitles:
    """structlog processor shortening feed-supplied titles in every event.

    Args:
        limit: Maximum characters kept; longer values end in ``"..."``.
        fields: Event keys to shorten.
    """

    def __init__(self, limit: int = 60, fields: tuple[str, ...] = TITLE_FIELDS) -> None:
        self._limit = limit
        self._fields = fields

    def __call__(
        self,
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        for key in self._fields:
            value = event_dict.get(key)
            if isinstance(value, str) and len(value) > self._limit:
                event_dict[key] = value[: self._limit] + "..."
        return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    log_file: str | None = None,
    max_title_length: int = 60,
) -> None:
    """Initialize structlog for ingestion runs and the CLI.

    Every event carries the ``run_id``/``lock_name`` bound by
    :func:`log_context`, and titles are shortened to ``max_title_length``.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: "json" for scheduled runs, "console" for interactive use.
        log_file: Optional file path for log output.
        max_title_length: Longest title kept in an event.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        TruncateTitles(max_title_length),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False,
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True,
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind context variables to every log event emitted inside the block.

    Used by ingestion runs so that resolver and repository events carry
    the run id and lock name without threading them through every call.
    Values bound outside the block are restored on exit.

    Args:
        **values: Key-value pairs merged into each event.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str, **bindings: str) -> structlog.stdlib.BoundLogger:
    """Get a module-specific logger with optional bound context.

    Args:
        name: Logger name (typically __name__).
        **bindings: Additional key-value pairs to bind to the logger.

    Returns:
        A structlog BoundLogger instance.
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    if bindings:
        logger = logger.bind(**bindings)
    return logger
