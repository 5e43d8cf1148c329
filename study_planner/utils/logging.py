"""structlog configuration shared by the API, the job runner and the poller.

Loggers are obtained with :func:`get_logger` and emit key-value events::

    logger = get_logger(__name__)
    logger.info("task_created", task_id=task_id, owner_id=owner_id)
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(debug: bool = False, json_logs: bool = False) -> None:
    """Configure stdlib logging and structlog.  Call once at startup."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # Third-party HTTP clients are chatty at DEBUG.
    for noisy in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None):
    """Return a structlog logger bound to *name*."""
    return structlog.get_logger(name)
