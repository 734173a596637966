"""
Structured logging setup for the queue and presence backend.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_context,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
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

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every entry with the service name."""
    event_dict.setdefault("service", "jumpseat-core")
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_job_sync(client_id: str, added: int, skipped: int, error_count: int, queue_size: int | None):
    """Log a per-client sync outcome with consistent fields."""
    logger = get_logger("job_sync")

    log_data = {
        "client_id": client_id,
        "added": added,
        "skipped": skipped,
        "error_count": error_count,
        "queue_size": queue_size,
        "event_type": "job_sync",
    }

    if error_count:
        logger.warning("Job sync completed with errors", **log_data)
    else:
        logger.info("Job sync completed", **log_data)


def log_status_transition(applier_id: str, status: str, connections: int):
    """Log an applier presence transition with consistent fields."""
    logger = get_logger("presence")
    logger.info(
        "Applier status updated",
        applier_id=applier_id,
        status=status,
        open_connections=connections,
        event_type="presence_transition",
    )
