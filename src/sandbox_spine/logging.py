"""
Structured logging for sandbox-spine.

Thin layer over structlog so every module logs the same way:

    >>> from sandbox_spine.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", service="sandbox-spine")
    >>> logger = get_logger(__name__)
    >>> logger.info("database.ready", port=32768)

Output is JSON when stdout is not a TTY (CI, log aggregation) and colored
console lines otherwise.

Key Concepts:
    LogContext: Binds the run context (``run_id``, ``stage``) to every line
        emitted inside its block. ``update()`` moves the block to the next
        stage; leaving the block restores whatever was bound before, so a
        cleanup nested in a failed initialize keeps the outer ``run_id``.
    Run fields: In JSON output the run context is grouped under
        ``sandbox.*`` next to the ECS ``@timestamp`` / ``log.level`` /
        ``service.name`` fields, so one run's lines filter on one key.
    Credential redaction: Connection URLs in any field have their password
        replaced before rendering, whichever module logged them.

Tags:
    logging, structlog, observability
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_RUN_FIELDS = ("run_id", "stage")
_URL_PASSWORD_RE = re.compile(r"(://[^:/@\s]+:)[^@\s]+@")
_REDACTED = "****"


def _redact_credentials(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask passwords embedded in connection URLs."""
    for key, value in event_dict.items():
        if key == "password" and value:
            event_dict[key] = _REDACTED
        elif isinstance(value, str) and "://" in value:
            event_dict[key] = _URL_PASSWORD_RE.sub(rf"\1{_REDACTED}@", value)
    return event_dict


class _EcsFields:
    """Rename fields for JSON output: ECS names plus a ``sandbox.*`` group."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        if "timestamp" in event_dict:
            event_dict["@timestamp"] = event_dict.pop("timestamp")
        if "level" in event_dict:
            event_dict["log.level"] = event_dict.pop("level")
        if "logger_name" in event_dict:
            event_dict["log.logger"] = event_dict.pop("logger_name")
        for key in _RUN_FIELDS:
            if key in event_dict:
                event_dict[f"sandbox.{key}"] = event_dict.pop(key)
        event_dict.setdefault("service.name", self.service)
        return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "sandbox-spine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in JSON logs
        add_timestamp: Include ISO timestamp in logs
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _redact_credentials,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [_EcsFields(service), structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``).

    The name travels as a ``logger_name`` field; PrintLogger has no name of its own.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(run_id="abc123", stage="network") as ctx:
            logger.info("network.created")
            ctx.update(stage="database")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self._context))
        return self

    def update(self, **kwargs: Any) -> None:
        """Rebind values for the rest of the block."""
        for key, token in structlog.contextvars.bind_contextvars(**kwargs).items():
            self._tokens.setdefault(key, token)

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}


__all__ = ["configure_logging", "get_logger", "LogContext"]
