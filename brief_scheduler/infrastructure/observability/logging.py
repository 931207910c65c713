"""
Structured logging for the daily brief scheduler.

Every entry carries the service name and, inside a sweep, the sweep run id
bound through structlog's contextvars.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "daily_brief_scheduler"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("psycopg.pool", "uvicorn.access", "redis")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON lines when True, colourless console output otherwise
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service_name(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance, usually named after the module."""
    return structlog.get_logger(name)


@contextmanager
def sweep_log_context(job_run: str, sweep_run_id: str) -> Iterator[None]:
    """Bind the sweep identity to every log entry emitted inside the block."""
    with structlog.contextvars.bound_contextvars(job_run=job_run, sweep_run_id=sweep_run_id):
        yield


def log_dependency_check(
    dependency: str,
    ok: bool,
    latency_ms: float | None,
    error: str | None = None,
    required: bool = True,
) -> None:
    """
    Log the outcome of a readiness probe against a backing store.

    Failures of optional dependencies are logged as warnings so they do not
    page anyone while the sweep can still run without them.
    """
    logger = get_logger("readiness")

    fields = {"dependency": dependency, "ok": ok, "latency_ms": latency_ms, "required": required}
    if error:
        fields["error"] = error

    if ok:
        logger.info("Dependency check passed", **fields)
    elif required:
        logger.error("Dependency check failed", **fields)
    else:
        logger.warning("Optional dependency check failed", **fields)
