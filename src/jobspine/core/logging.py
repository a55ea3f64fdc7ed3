"""
Structured logging for jobspine.

structlog is configured once at process start; modules then take a logger
with ``get_logger(__name__)`` and emit snake_case event names plus
key-value fields. Scheduling code binds ``group`` and ``job_name`` on every
event so a line can be traced back to one job.

Processor chain::

    [TimeStamper(iso)] → merge_contextvars → add_log_level → StackInfoRenderer
        → set_exc_info → service.name
        → JSON:    ECS field names → format_exc_info → JSONRenderer
        → console: ConsoleRenderer

Examples:
    >>> configure_logging(level="INFO", json_format=True, service="jobspine")
    >>> logger = get_logger(__name__)
    >>> with LogContext(group="BA", job_name="accuracy"):
    ...     logger.info("reconcile_started")
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service_name = "jobspine"

# structlog key → ECS key
_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level"}


def _add_service_name(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def _ecs_field_names(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for old, new in _ECS_RENAMES.items():
        if old in event_dict:
            event_dict[new] = event_dict.pop(old)
    return event_dict


def _build_processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_name,
    ]
    if json_format:
        processors += [
            _ecs_field_names,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "jobspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog (and the stdlib root logger) for this process.

    Args:
        level: Minimum level name, e.g. ``"DEBUG"`` or ``"WARNING"``.
        json_format: JSON lines when True, colored console when False.
            ``None`` picks JSON unless stdout is a terminal.
        service: Value of the ``service.name`` field.
        add_timestamp: Stamp each event with an ISO ``@timestamp``.
    """
    global _service_name
    _service_name = service

    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = logging.getLevelName(level.upper())

    structlog.configure(
        processors=_build_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # APScheduler and httpx log through the standard library
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Logger for ``name``, which is bound as the ECS ``log.logger`` field.

    The field is passed as an initial value rather than ``logger=`` because
    ``structlog.get_logger`` forwards keywords to ``wrap_logger``, whose
    first parameter is already called ``logger``.
    """
    if not name:
        return structlog.get_logger()
    return structlog.get_logger(name, **{"log.logger": name})


def bind_context(**kwargs: Any) -> None:
    """Add fields to every later event on the current thread or task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` block.

    Fields bound before the block with the same names are restored on exit.
    """

    def __init__(self, **kwargs: Any):
        self._fields = kwargs
        self._scope: AbstractContextManager | None = None

    def __enter__(self) -> LogContext:
        self._scope = structlog.contextvars.bound_contextvars(**self._fields)
        self._scope.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._scope is not None:
            self._scope.__exit__(*exc_info)
            self._scope = None


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
