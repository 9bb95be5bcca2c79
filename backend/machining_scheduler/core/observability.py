"""
Observability Infrastructure

Structured logging and Prometheus metrics for scheduling runs. Domain services
obtain loggers through ``get_logger`` and report finished runs through
``record_scheduling_run``.
"""

import contextvars
import functools
import logging
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from prometheus_client import Counter, Histogram

from .config import settings

# Context variables for correlation tracking
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

F = TypeVar("F", bound=Callable[..., Any])

# Prometheus metrics
SCHEDULING_RUNS = Counter(
    "machining_scheduler_runs_total",
    "Total scheduling runs",
    ["strategy", "outcome"],
)

SCHEDULING_DURATION = Histogram(
    "machining_scheduler_run_duration_seconds",
    "Scheduling run duration",
    ["strategy"],
)

CONFLICTS_DETECTED = Counter(
    "machining_scheduler_conflicts_total",
    "Conflicts reported by scheduling runs",
    ["conflict_type"],
)

SLOT_SEARCHES = Counter(
    "machining_scheduler_slot_searches_total",
    "Availability searches by path",
    ["path"],
)

SCHEDULER_OPERATIONS = Counter(
    "machining_scheduler_operations_total",
    "Total scheduler operations",
    ["operation_type", "status"],
)

SCHEDULER_DURATION = Histogram(
    "machining_scheduler_operation_duration_seconds",
    "Scheduler operation duration",
    ["operation_type"],
)


class CorrelationIdProcessor:
    """Structlog processor to add correlation ID to log entries."""

    def __call__(
        self, logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        correlation_id = correlation_id_var.get("")
        if correlation_id:
            event_dict["correlation_id"] = correlation_id
        return event_dict


def setup_structured_logging() -> None:
    """Configure structured logging with JSON output and correlation tracking."""

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        CorrelationIdProcessor(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.add_log_level,
    ]

    if settings.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=settings.ENVIRONMENT == "local")
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for request tracking."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    """Get current correlation ID."""
    return correlation_id_var.get("")


def record_scheduling_run(
    strategy: str,
    success: bool,
    duration_seconds: float,
    conflict_types: list[str] | None = None,
) -> None:
    """Record metrics for a finished scheduling run."""
    outcome = "success" if success else "failure"
    SCHEDULING_RUNS.labels(strategy=strategy, outcome=outcome).inc()
    SCHEDULING_DURATION.labels(strategy=strategy).observe(duration_seconds)
    for conflict_type in conflict_types or []:
        CONFLICTS_DETECTED.labels(conflict_type=conflict_type).inc()

    get_logger("performance").info(
        "Scheduling run recorded",
        strategy=strategy,
        outcome=outcome,
        duration_seconds=duration_seconds,
        conflict_count=len(conflict_types or []),
        correlation_id=get_correlation_id(),
    )


def monitor_performance(operation_type: str) -> Callable[[F], F]:
    """Decorator to monitor coroutine performance with metrics and logging."""

    def decorator(func: F) -> F:
        def _context() -> dict[str, Any]:
            return {
                "operation": operation_type,
                "function": func.__name__,
                "correlation_id": get_correlation_id(),
            }

        def _succeeded(started: float, context: dict[str, Any]) -> None:
            duration = time.perf_counter() - started
            SCHEDULER_OPERATIONS.labels(
                operation_type=operation_type, status="success"
            ).inc()
            SCHEDULER_DURATION.labels(operation_type=operation_type).observe(duration)
            get_logger(func.__module__).debug(
                "Operation completed", **context, duration_seconds=duration
            )

        def _failed(started: float, context: dict[str, Any], error: Exception) -> None:
            SCHEDULER_OPERATIONS.labels(
                operation_type=operation_type, status="error"
            ).inc()
            get_logger(func.__module__).error(
                "Operation failed",
                **context,
                duration_seconds=time.perf_counter() - started,
                error=str(error),
                error_type=type(error).__name__,
            )

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            context = _context()
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _failed(started, context, e)
                raise
            _succeeded(started, context)
            return result

        return async_wrapper  # type: ignore[return-value]

    return decorator
