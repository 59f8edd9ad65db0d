"""
Structured logging for tdsbridge.

Every statement the adapter sends is logged through structlog so the SQL
text, the shard it ran on and its duration end up as fields rather than
interpolated strings.  Applications call :func:`configure_logging` once
at startup; library modules only ever call :func:`get_logger`.

Events emitted by the adapter::

    sql.execute            debug  sql, server
    sql.completed          info   sql, server, duration_ms
    sql.failed             error  sql, server, duration_ms, error
    sql.cancel_failed      warn   server, error
    connection.opened      info   server, dataserver
    connection.closed      debug
    connection.close_failed warn  error
    pool.discard           warn   server, reason

While a statement runs, ``server`` is bound in the structlog context
(:class:`LogContext`), so events from the pool, the driver and row
consumers carry it too.  Long ``sql`` fields are cut to
``sql_max_length`` characters.

Examples:
    >>> from tdsbridge.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="billing")
    >>> logger = get_logger(__name__)
    >>> logger.info("sql.completed", server="reporting", duration_ms=4.2)

Tags:
    logging, structlog, observability, tdsbridge
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "tdsbridge"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


class _SqlTruncator:
    """Cut the ``sql`` field down to ``limit`` characters."""

    def __init__(self, limit: int):
        self.limit = limit

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        sql = event_dict.get("sql")
        if isinstance(sql, str) and len(sql) > self.limit:
            event_dict["sql"] = sql[: self.limit] + "..."
            event_dict["sql_length"] = len(sql)
        return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "tdsbridge",
    add_timestamp: bool = True,
    sql_max_length: int | None = 2000,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
        sql_max_length: Truncate logged SQL text beyond this length (None = never)
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if sql_max_length is not None:
        shared_processors.append(_SqlTruncator(sql_max_length))

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread/task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Context manager for scoped logging context.

    Keys that were already bound are restored on exit, so scopes nest.

    Example:
        with LogContext(server="reporting", request_id="abc123"):
            db.execute_dui("UPDATE t SET x = 1")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._previous: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        bound = structlog.contextvars.get_contextvars()
        self._previous = {key: bound[key] for key in self._context if key in bound}
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())
        if self._previous:
            bind_context(**self._previous)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
