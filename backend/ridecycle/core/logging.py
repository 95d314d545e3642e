"""
Structured logging configuration with request correlation.

Configures structlog once per process: console output in development,
JSON lines everywhere else. Request and user identifiers are carried in
context variables so every event emitted while handling a request (or a
sweeper run) can be correlated.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from ridecycle.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def add_correlation_ids(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach the current request and user IDs, when set."""
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    user_id = user_id_ctx.get()
    if user_id:
        event_dict["user_id"] = user_id
    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging.

    Safe to call more than once; the last call wins. The API lifespan and
    the sweeper CLI both call it on startup.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_logger_name,
        add_correlation_ids,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request ID (a fresh UUID if none is given) and return it."""
    request_id = request_id or str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


def set_user_id(user_id: Optional[str]) -> None:
    user_id_ctx.set(user_id)


def clear_context() -> None:
    """Reset correlation context at the end of a request."""
    request_id_ctx.set("")
    user_id_ctx.set(None)


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_threshold_ms: float = 500.0,
    **context: Any,
) -> Iterator[None]:
    """
    Log how long a block took; slow blocks are logged as warnings.

    Example:
        >>> with log_performance(logger, "expiry_sweep", batch_size=100):
        ...     await sweeper.sweep()
    """
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    log = logger.warning if duration_ms > slow_threshold_ms else logger.info
    log("Operation completed", operation=operation, duration_ms=duration_ms, **context)
