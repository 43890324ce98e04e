"""Structured logging configuration using structlog.

Every line is one JSON object on stderr carrying ``service``, ``level``,
``ts`` and any bound context (``component``, ``request_id``). Records from
stdlib loggers (uvicorn, redis, kubernetes_asyncio) are rendered by the same
JSON renderer through ``ProcessorFormatter``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

SERVICE_NAME = "kubeban"

# Third-party loggers that are noisy at debug level
_QUIET_LOGGERS = ("asyncio", "aiohttp.access", "kubernetes_asyncio.client.rest")


def _add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: str = "info", stream: TextIO | None = None) -> None:
    """Configure structlog for JSON output to *stream* (stderr by default)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    out = stream or sys.stderr
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            timestamper,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                _add_service,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                timestamper,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str, **initial: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name and any extra context."""
    return structlog.get_logger(component=component, **initial)  # type: ignore[return-value]
