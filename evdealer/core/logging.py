"""
Structured logging for the dealership workflows.

Every module obtains its logger through ``get_logger(__name__)`` and logs
keyword-structured events. Request middleware binds a request id and the
acting user id into context variables, so order, payment and delivery
events can be traced back to the HTTP request that caused them.

Payment credentials must never reach a log sink: ``redact_secrets`` masks
Stripe keys, bearer tokens and checkout client secrets in any event field.
"""

import logging
import re
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from evdealer.core.config import get_settings

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
actor_id_ctx: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

SENSITIVE_FIELDS = frozenset(
    {"authorization", "client_secret", "password", "secret_key", "stripe_secret_key", "token"}
)
SECRET_PATTERN = re.compile(r"\b(sk|rk|pk)_(live|test)_[A-Za-z0-9]+|\bBearer\s+[\w\-.]+")
REDACTED = "***"

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    # Stripe logs full request lines at INFO
    "stripe": logging.WARNING,
}


def add_correlation_ids(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach the current request id and acting user id, when bound."""
    request_id = request_id_ctx.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    actor_id = actor_id_ctx.get()
    if actor_id:
        event_dict.setdefault("actor_id", actor_id)
    return event_dict


def redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Mask credentials in an event.

    Fields named like credentials are replaced outright; string values are
    scanned for API keys and bearer tokens embedded in messages.
    """
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_FIELDS:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = SECRET_PATTERN.sub(REDACTED, value)
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog and route the standard library through it.

    Development renders colored console output; every other environment
    emits one JSON document per event.
    """
    settings = get_settings()

    renderer: Processor
    if settings.is_development:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True, exception_formatter=structlog.dev.plain_traceback
        )
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_correlation_ids,
            structlog.processors.format_exc_info,
            redact_secrets,
            renderer,
        ],
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
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind the request id for the current request, generating one if absent.

    Returns:
        The bound request id
    """
    request_id = request_id or str(uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_ctx.get()


def set_user_id(user_id: Optional[str]) -> None:
    actor_id_ctx.set(user_id)


def clear_context() -> None:
    """Reset correlation ids at the end of a request."""
    request_id_ctx.set("")
    actor_id_ctx.set(None)


class PerformanceLogger:
    """
    Context manager that logs how long a block took.

    Blocks slower than ``slow_ms`` are logged at warning level; a block that
    raises is logged at error level and the exception propagates.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_ms: float = 500.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_ms = slow_ms
        self.context = context
        self._started = 0.0

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 2)

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = self.elapsed_ms
        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                **self.context,
            )
        elif duration_ms > self.slow_ms:
            self.logger.warning(
                "Slow operation",
                operation=self.operation,
                duration_ms=duration_ms,
                slow_ms=self.slow_ms,
                **self.context,
            )
        else:
            self.logger.info(
                "Operation completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context,
            )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_ms: float = 500.0,
    **context: Any,
) -> PerformanceLogger:
    """
    Time a block of work.

    Example:
        >>> with log_performance(logger, "stripe_checkout", order_id=str(order_id)):
        ...     session = client.create_checkout_session(...)
    """
    return PerformanceLogger(logger, operation, slow_ms=slow_ms, **context)
