"""
Structured logging for the behavior store.

Supports JSONL (JSON Lines) output format so store diagnostics can be
collected from the device and analysed offline.
Features:
- Rolling log file with configurable size and backup count
- JSON or plain console output
- Operation context bound around every job the store runs
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from behavior_store.config import LoggingConfig, get_config

if TYPE_CHECKING:
    from structlog.types import Processor

# Handlers installed by the last setup_logging call
_installed: list[logging.Handler] = []


class JSONLRotatingHandler(RotatingFileHandler):
    """
    Rotating file handler that writes JSONL format.

    Each log entry is a single JSON object on its own line.
    """

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int,
        backup_count: int,
        encoding: str = "utf-8",
    ):
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
        )


def _add_service_info(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add service metadata to each log entry."""
    event_dict["service"] = "behavior-store"
    event_dict["pid"] = os.getpid()
    return event_dict


def setup_logging(settings: LoggingConfig | None = None) -> None:
    """
    Configure structured logging for the store.

    Called by BehaviorDataStore.open with the store's logging settings.
    Calling it again replaces the handlers a previous call installed and
    leaves any other root handlers alone.

    Args:
        settings: Logging settings. Defaults to the process configuration.
    """
    settings = settings or get_config().logging
    log_level = getattr(logging, settings.level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service_info,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.dict_tracebacks,
        structlog.processors.UnicodeDecoder(),
    ]

    # Not cached: a later open() may reconfigure with different settings
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handlers: list[logging.Handler] = []

    if settings.file:
        jsonl_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )

        file_handler = JSONLRotatingHandler(
            filename=settings.file,
            max_bytes=settings.max_bytes,
            backup_count=settings.backup_count,
        )
        file_handler.setFormatter(jsonl_formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    if settings.console:
        if settings.format.lower() == "json":
            console_renderer: Processor = structlog.processors.JSONRenderer()
        else:
            console_renderer = structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )

        console_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    for handler in _installed:
        root_logger.removeHandler(handler)
        handler.close()
    _installed[:] = handlers
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("metrics_saved", date="2025-01-01")
        logger.warning("record_skipped", collection="patterns", key="p-1")
    """
    return structlog.get_logger(name)


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """
    Context manager for temporary context binding.

    Example:
        with with_context(operation="retention"):
            logger.info("started")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
