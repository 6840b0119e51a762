"""structlog setup for the capture pipeline.

Console rendering for development, one JSON object per line in production.
Drains bind ``drain_id`` and ``trigger`` through LogContext so every event a
drain emits, including the queue and remote client events, can be grouped.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from transaction_capture.config import Settings, get_settings

NOISY_LOGGERS = ("httpcore", "httpx")


def _normalize_level(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["level"] = "WARNING" if method_name == "warn" else method_name.upper()
    return event_dict


def _service_fields(settings: Settings) -> Processor:
    fields = {
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment.value,
    }

    def add_service_fields(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_fields


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def build_processors(settings: Settings) -> list[Processor]:
    """Processor chain for the configured ``"console"`` or ``"json"`` output."""
    if settings.log_format == "json":
        return [
            *_shared_processors(),
            _normalize_level,
            _service_fields(settings),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    return [
        *_shared_processors(),
        structlog.stdlib.add_log_level,
        structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ),
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """Route structlog through stdlib logging on stderr (and the log file, if set).

    Call once at process start, before the first event is logged.
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.value)

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdout is reserved for command output
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    if settings.log_file:
        _add_file_handler(settings.log_file, level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _add_file_handler(log_file: Path, level: int) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    logging.getLogger().addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Module-level logger; usage: ``logger = get_logger(__name__)``."""
    return structlog.stdlib.get_logger(name)


class LogContext:
    """Bind key/values into the contextvars log context for a ``with`` block.

    Example:
        with LogContext(drain_id=drain_id, trigger="timer"):
            logger.info("drain_started")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.kwargs)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
