"""Structured logging for the admin API.

Every record, including uvicorn and SQLAlchemy output routed through the
stdlib bridge, carries the service name so entitlement changes can be
filtered out of a shared log stream.
"""

from __future__ import annotations

import logging.config
from typing import Any

import structlog

from .constants import SERVICE_NAME


def add_service(_logger, _method, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(json_logs: bool) -> list:
    if json_logs:
        # exc_info becomes a structured traceback instead of a text blob
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer()]


def configure_logging(log_level: str = "INFO", json_logs: bool = True, sql_echo: bool = False) -> None:
    """Route structlog and stdlib logging through one formatter.

    ``sql_echo`` raises ``sqlalchemy.engine`` to INFO so statements issued
    by the assignment engine show up next to the events that caused them.
    """
    shared = _shared_processors()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "entitlements": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, *_renderer(json_logs)],
                "foreign_pre_chain": shared,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "entitlements",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level.upper()},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "INFO" if sql_echo else "WARNING"},
            "sqlalchemy.pool": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
