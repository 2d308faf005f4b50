"""Structured logging utilities using structlog for data store context."""

import sys
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars
from structlog.processors import JSONRenderer

from evidence_verifier.config.settings import settings

IS_TTY = sys.stderr.isatty()


def configure_structured_logging() -> None:
    """
    Configure structured logging with appropriate processors and renderers.

    Uses:
    - Console renderer for development (colorized, human-readable)
    - JSON renderer for production (structured, machine-readable)
    """
    processors = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if IS_TTY and settings.log_format.lower() == "console":
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_structured_logger(name: str, **context: Any) -> structlog.BoundLogger:
    """
    Get a structured logger with bound context.

    Args:
        name: Logger name (typically the component name)
        **context: Additional context to bind

    Returns:
        BoundLogger with the component and any extra context bound

    Example:
        >>> log = get_structured_logger("EvidenceStore", backend="sqlite")
        >>> log.info("evidence_updated", evidence_id=3, status="RUNNING")
    """
    logger = structlog.get_logger(name).bind(component=name)
    if context:
        logger = logger.bind(**context)
    return logger


# Configure on module import
configure_structured_logging()


__all__ = [
    "get_structured_logger",
    "configure_structured_logging",
]
