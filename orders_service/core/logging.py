"""
Structured logging for the API and the notification worker.

structlog renders through the standard library root handler: colored
console output in development, one JSON object per line elsewhere. Events
logged while a request or task is in flight carry its request ID, and
delivery PINs are redacted before rendering.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from orders_service.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

REDACTED_FIELDS = frozenset({"pin", "pin_code", "supplied_pin"})


def add_request_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_service_name(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", get_settings().app_name)
    return event_dict


def redact_pins(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace delivery PIN values with a fixed mask."""
    for key in REDACTED_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "****"
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; the API calls it at import and the Celery
    worker once per child process.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_id,
        add_service_name,
        redact_pins,
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

    for name, level in (
        ("uvicorn", logging.INFO),
        ("uvicorn.access", logging.WARNING),
        ("sqlalchemy.engine", logging.WARNING),
        ("celery", logging.INFO),
        ("asyncio", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request ID to the current context.

    Args:
        request_id: Incoming correlation ID; a UUID4 is generated if omitted

    Returns:
        The request ID now in effect
    """
    if request_id is None:
        request_id = str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


def clear_context() -> None:
    """Drop the request ID and any structlog context vars."""
    request_id_ctx.set("")
    structlog.contextvars.clear_contextvars()


class PerformanceLogger:
    """
    Context manager timing a block of work.

    Logs ``Operation completed`` at info, or at warning above
    ``slow_threshold_ms``, and ``Operation failed`` at error when the block
    raises. Exceptions are never suppressed.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_threshold_ms: float = 500.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        log = self.logger.warning if duration_ms > self.slow_threshold_ms else self.logger.info
        log(
            "Operation completed",
            operation=self.operation,
            duration_ms=duration_ms,
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Time a block and log its duration.

    Example:
        >>> with log_performance(logger, "verify_pin", order_id=order_id):
        ...     verified = await service.verify_delivery_pin(order_id, pin)
    """
    return PerformanceLogger(logger, operation, **context)
