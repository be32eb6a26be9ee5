"""
Structured Logging with Structlog.

Provides JSON-formatted logs with correlation IDs and context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from vault_access.config import settings
from vault_access.models.api import GrantLogLevel
from vault_access.models.domain import GrantLogEntry


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "entitlement_granted",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "vault_access.services.grants",
        "service": "vault-access-api",
        "version": "0.1.0",
        "request_id": "req-123",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("access_level_resolved", user_id=user_id, access_level="basic")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class StructlogGrantLog:
    """
    Grant-procedure logger that writes to structlog.

    Also keeps the entries it received so callers (webhook handler, admin
    route) can report them back.
    """

    def __init__(self, name: str = "vault_access.grants", **context: Any) -> None:
        self._logger = get_logger(name).bind(**context)
        self.entries: list[GrantLogEntry] = []

    async def __call__(self, level: GrantLogLevel, message: str) -> None:
        self.entries.append(GrantLogEntry(level=level, message=message))
        if level == GrantLogLevel.ERROR:
            self._logger.error("entitlement_grant_log", grant_level=level.value, detail=message)
        else:
            self._logger.info("entitlement_grant_log", grant_level=level.value, detail=message)

    @property
    def messages(self) -> list[str]:
        return [entry.message for entry in self.entries]


class log_context:
    """
    Context manager for adding structured logging context.

    Usage:
        with log_context(request_id="req-123", user_id="user-456"):
            logger.info("processing_request")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        """Enter context - bind context variables."""
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context - clear context variables."""
        structlog.contextvars.unbind_contextvars(*self.context.keys())
