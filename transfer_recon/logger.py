"""Structured logging configuration.

This module provides:
- Structured logging via structlog with JSON output for production
- Timing utilities for matching passes
- A decorator for logging calls to the exchange rate service
- Exception logging helpers with full context
"""

import logging
import sys
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from transfer_recon.config import settings

P = ParamSpec("P")
T = TypeVar("T")


def _build_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _select_renderer() -> Processor:
    if settings.debug:
        # Human-readable logs for development
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """Configure structlog on top of stdlib logging."""

    processors = _build_processors()
    renderer = _select_renderer()

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        handlers=[handler],
        level=logging.DEBUG if settings.debug else logging.INFO,
    )


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a structured logger."""
    return structlog.get_logger(name)


# =============================================================================
# Timing Utilities
# =============================================================================


@contextmanager
def log_timing(operation: str, logger: BoundLogger | None = None) -> Iterator[dict[str, Any]]:
    """Log "<operation> completed" with duration_ms once the block exits.

    Keys the block adds to the yielded dict (match_count, ...) are logged too.
    """
    log = logger or get_logger(__name__)
    start = time.perf_counter()
    context: dict[str, Any] = {}
    try:
        yield context
    finally:
        log.info(
            f"{operation} completed",
            operation=operation,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            **context,
        )


def log_external_api(
    service: str,
    *,
    logger: BoundLogger | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator to log async external API calls with timing.

    Usage:
        @log_external_api("exchange_rate_api")
        async def fetch_rate(...):
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        log = logger or get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            extra: dict[str, Any] = {"service": service, "function": func.__name__}
            try:
                result = await func(*args, **kwargs)
                duration_ms = (time.perf_counter() - start) * 1000
                log.info(
                    f"External API call to {service}",
                    duration_ms=round(duration_ms, 2),
                    success=True,
                    **extra,
                )
                return result
            except Exception as exc:
                duration_ms = (time.perf_counter() - start) * 1000
                log.warning(
                    f"External API call to {service} failed",
                    duration_ms=round(duration_ms, 2),
                    success=False,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    **extra,
                )
                raise

        return wrapper

    return decorator


# =============================================================================
# Exception Logging Helpers
# =============================================================================


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    **extra: Any,
) -> None:
    """Log an exception at error level with its traceback and the caller's context.

    Usage:
        except PersistenceError as exc:
            log_exception(logger, exc, "Failed to persist transfer links", change_count=len(changes))
    """
    logger.error(
        context,
        exc_info=exc,
        error=str(exc),
        error_type=type(exc).__name__,
        error_module=type(exc).__module__,
        **extra,
    )
