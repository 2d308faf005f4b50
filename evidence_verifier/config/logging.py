"""Loguru configuration for the queue, worker, producer and CLI.

Every record carries three extras:
- component: set by get_logger()
- queue: the verification queue name from settings
- worker: the tag of the worker handling the current job, "-" elsewhere

Several worker processes usually share one queue and one log stream, so
worker_context() tags everything logged while a worker consumes, including
records from the queue itself.
"""

import sys
from typing import Optional

from loguru import logger

from evidence_verifier.config.settings import Settings, settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<magenta>{extra[queue]}@{extra[worker]}</magenta> | "
    "<level>{message}</level>"
)


def configure_logging(config: Optional[Settings] = None) -> None:
    """
    (Re)configure the global loguru logger from settings.

    Colorized console output when stderr is a TTY and log_format is
    "console"; otherwise one JSON object per record on stdout.

    Args:
        config: Settings to apply (defaults to the module-level singleton)
    """
    config = config or settings
    level = config.log_level.upper()

    logger.remove()
    logger.configure(extra={"component": "-", "queue": config.queue_name, "worker": "-"})

    if sys.stderr.isatty() and config.log_format.lower() == "console":
        logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)
    else:
        logger.add(
            sys.stdout,
            format="{message}",
            level=level,
            serialize=True,
            diagnose=False,
        )


def get_logger(component: str):
    """
    Logger bound to a component name.

    Example:
        >>> log = get_logger("queue.verify-evidence")
        >>> log.info("Job enqueued: 17", evidence_id=42)
    """
    return logger.bind(component=component)


def worker_context(queue_name: str, worker: str):
    """
    Tag every record logged inside the block with queue and worker.

    Uses loguru's contextvars support, so records from awaited coroutines
    and tasks spawned inside the block are tagged too.

    Example:
        >>> with worker_context("verify-evidence", "3f2a9c1d"):
        ...     await queue.consume(handler, stop_event)
    """
    return logger.contextualize(queue=queue_name, worker=worker)


configure_logging()

__all__ = ["logger", "get_logger", "configure_logging", "worker_context"]
