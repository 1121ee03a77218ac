"""Structured logging with per-cycle correlation.

Uses structlog over stdlib logging. Each poll cycle binds a fresh
``cycle_id`` into structlog contextvars. Entries from loggers obtained
through :func:`get_logger` carry it; plain ``logging.getLogger`` loggers
(store, cursor, processor) do not pass through ``merge_contextvars`` and
are correlated by timestamp only.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog

CYCLE_ID_KEY = "cycle_id"


def new_cycle_id() -> str:
    """Generate a cycle ID and bind it to the current context."""
    cid = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(**{CYCLE_ID_KEY: cid})
    return cid


def get_cycle_id() -> str:
    """Cycle ID bound in the current context, or ``""`` outside a cycle."""
    return str(structlog.contextvars.get_contextvars().get(CYCLE_ID_KEY, ""))


def clear_cycle_id() -> None:
    structlog.contextvars.unbind_contextvars(CYCLE_ID_KEY)


def _add_service(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: tag every entry with the service name."""
    event_dict.setdefault("service", "doma-ingest")
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        _add_service,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )
    # SQL echo and httpx request lines are too chatty at INFO.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
