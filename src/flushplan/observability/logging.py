"""
flushplan.observability.logging

Structured logging configuration for applications embedding the engine.

Responsibilities:
- Configure `structlog` (JSON in deployed environments, console output in dev).
- Keep SQLAlchemy's own statement logging in line with `echo_sql`.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from flushplan.settings import Settings


def configure_logging(*, service_name: str, level: str, json_logs: bool = True) -> None:
    """
    Call once at process startup; the library itself only ever calls `get_logger`.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: Any = (
        structlog.processors.JSONRenderer(default=str)
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings: Settings) -> None:
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json_logs=settings.env != "dev",
    )
    # `echo_sql` already routes statements through this logger; otherwise keep it quiet.
    if not settings.echo_sql:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Batch-scoped metadata is bound via contextvars in `observability.context`; every pipeline
# stage logs at debug level, the manager logs outcomes at info/warning.
