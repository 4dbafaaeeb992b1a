"""Logging configuration using structlog.

Call ``setup_logging`` once at process start. Library code only ever asks
for a logger with ``get_logger(__name__)``.
"""

import logging
import sys

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
from structlog.typing import EventDict, Processor, WrappedLogger

from src.identity.core.config import Settings
from src.identity.core.masking import mask_email, mask_mobile

# Drivers that log every statement at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncpg")


def _worker_context(worker_id: int) -> Processor:
    """Stamp every event with the id-generator worker of this process."""

    def add_worker(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("worker_id", worker_id)
        return event_dict

    return add_worker


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger from ``settings``.

    ``settings.debug`` selects colored console output; otherwise events are
    rendered as JSON lines.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.log_level,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        _worker_context(settings.worker_id),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.debug:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    noisy_level = logging.DEBUG if settings.debug else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_user_context(user_id: int, email: str | None = None, log_user_emails: bool = False) -> None:
    """Bind the signed-in user to all subsequent log calls of this context.

    The email is bound only when ``log_user_emails`` is set.
    """
    bind_contextvars(user_id=user_id)
    if email and log_user_emails:
        bind_contextvars(user_email=email)


def clear_log_context() -> None:
    clear_contextvars()


def loggable_contact(value: str, log_user_emails: bool) -> str:
    """Return a contact value fit for a log event (masked unless explicitly allowed)."""
    if log_user_emails or not value:
        return value
    if "@" in value:
        return mask_email(value)
    return mask_mobile(value)
