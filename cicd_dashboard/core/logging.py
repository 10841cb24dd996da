"""Structured logging setup using structlog.

Everything goes to stderr through one stdlib handler. The ``delivery_log``
logger (one record per channel delivery attempt) can additionally be
written as JSON lines to its own file for auditing.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from cicd_dashboard.core.config import get_settings

DELIVERY_LOGGER = "delivery_log"

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("aiohttp.access", "httpx", "websockets")

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _attach_delivery_file(path: str) -> None:
    delivery = logging.getLogger(DELIVERY_LOGGER)
    for handler in list(delivery.handlers):
        delivery.removeHandler(handler)
        handler.close()

    if not path:
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    delivery.addHandler(file_handler)


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    delivery_file: str | None = None,
) -> None:
    """Configure structlog over stdlib logging.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer override, "json" or "console". Uses config if None.
        delivery_file: JSON-lines file for delivery records, "" to disable.
            Uses config if None.
    """
    settings = get_settings().logging
    log_level = getattr(logging, (level or settings.level).upper(), logging.INFO)

    if (fmt or settings.format) == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stderr = logging.StreamHandler(sys.stderr)
    stderr.setFormatter(_formatter(renderer))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stderr)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _attach_delivery_file(settings.delivery_file if delivery_file is None else delivery_file)
