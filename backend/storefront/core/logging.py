"""
Structured logging for the storefront.

Modules log key/value events through :func:`get_logger`. The HTTP layer binds
a request id and the acting user into structlog's context variables, so every
transition, side effect and storage error logged while serving one request
carries the same correlation fields.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from storefront.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "asyncio")


def stamp_event(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add the UTC time, the logger name and the request id to an event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    event_dict.setdefault("logger", getattr(logger, "name", None))
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging() -> None:
    """Colored console output in development, one JSON object per line otherwise."""
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        stamp_event,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.is_development:
        renderer: Processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    else:
        renderer = structlog.processors.JSONRenderer()
    processors.append(renderer)

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
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Start correlating logs under a request id.

    Args:
        request_id: Id supplied by the caller; a UUID is generated when missing

    Returns:
        The id now in effect
    """
    request_id = request_id or str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


def set_actor_id(actor_id: Optional[str]) -> None:
    structlog.contextvars.bind_contextvars(actor_id=actor_id)


def clear_context() -> None:
    """Forget the request id and every bound field once a request is done."""
    request_id_ctx.set("")
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_threshold_ms: float = 500.0,
    **context: Any,
) -> Iterator[None]:
    """
    Log how long a block took.

    Blocks slower than ``slow_threshold_ms`` are logged as warnings and blocks
    that raise are logged as errors before the exception propagates.

    Example:
        >>> with log_performance(logger, "checkout", user_id=actor.id):
        ...     result = await orders.create_order(...)
    """
    started = time.perf_counter()
    try:
        yield
    except BaseException as e:
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
