"""Structured Logging for NutriSafe.

This module provides structured logging using structlog with support for:
    - JSON output for production environments
    - Pretty console output for development
    - Per-query context binding (query ids, KB versions)
    - Pipeline timing decorators
    - Exception logging with full context

Clinical profiles are never logged in full; callers bind ids and counts only.
Log output goes to stderr so command output on stdout stays machine-readable.

Usage:
    from nutrisafe.logging import get_logger, configure_logging

    configure_logging(level="DEBUG", json_output=False)
    logger = get_logger(__name__)

    logger.info("Evaluating query", query_id="q-123", items=3)

    with log_context(query_id="q-123", kb_version="2026.01"):
        logger.info("Matched rules", matches=4)
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import structlog
from rich.console import Console
from rich.logging import RichHandler


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

P = ParamSpec("P")
T = TypeVar("T")


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure structured logging for the application.

    structlog events are routed through the standard library so that handlers
    can be swapped at runtime without invalidating cached loggers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output logs as JSON (for production)
        log_file: Optional file path for log output
    """
    log_level = getattr(logging, level.upper())
    shared_processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: list[structlog.typing.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    else:
        renderer = [
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.RichTracebackFormatter(
                    show_locals=False,
                    max_frames=10,
                ),
            ),
        ]
        console = Console(stderr=True)
        handler = RichHandler(
            console=console,
            show_time=False,
            show_path=True,
            rich_tracebacks=True,
            markup=False,
        )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderer],
    )
    handler.setFormatter(formatter)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the module

    Returns:
        A structlog BoundLogger backed by the standard library logger of that name
    """
    return structlog.get_logger(name)


@contextmanager
def log_context(**kwargs: Any):
    """Context manager for temporary logging context.

    Usage:
        with log_context(query_id="q-1", kb_version="2026.01"):
            logger.info("Evaluating")  # Includes query_id and kb_version
        logger.info("Done")  # No longer has context
    """
    structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*kwargs.keys())


def timed(
    stage: str | None = None,
    logger: BoundLogger | None = None,
    level: str = "debug",
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to log how long a pipeline stage takes.

    Args:
        stage: Stage name for the log event (defaults to the function's qualified name)
        logger: Logger to use (defaults to the module logger of the function)
        level: Log level for timing messages

    Usage:
        @timed("evaluate")
        def _evaluate(...):
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        log = logger or get_logger(func.__module__)
        name = stage or func.__qualname__

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            status = "error"
            try:
                result = func(*args, **kwargs)
                status = "ok"
                return result
            finally:
                getattr(log, level)(
                    "Stage finished",
                    stage=name,
                    status=status,
                    elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
                )

        return wrapper

    return decorator


def log_exception(
    logger: BoundLogger,
    exc: Exception,
    *,
    context: dict[str, Any] | None = None,
) -> None:
    """Log an exception together with its ErrorContext and cause."""
    from nutrisafe.exceptions import NutriSafeError

    error_info: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }
    if isinstance(exc, NutriSafeError):
        if exc.context:
            error_info["operation"] = exc.context.operation
            error_info["component"] = exc.context.component
            error_info.update(exc.context.details)
        if exc.cause:
            error_info["cause"] = f"{type(exc.cause).__name__}: {exc.cause}"
    if context:
        error_info.update(context)

    logger.exception("Pipeline error", **error_info)
