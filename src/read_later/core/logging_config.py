"""Structured logging configuration using structlog.

``configure_logging()`` runs once per process, from Celery's ``setup_logging``
signal in workers.  Library modules log through
``logging.getLogger(__name__)``; the worker and the routes use
``structlog.get_logger(__name__)`` with key-value events.  Both end up in one
stdout handler.

Values bound with ``structlog.contextvars`` (the worker binds ``job_id``
while it processes a job) are merged into every record, stdlib ones
included.
"""

from __future__ import annotations

import logging
import sys

import structlog

_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "trafilatura", "celery.redirected")


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib and structlog records through one JSON handler.

    ``DEBUG`` switches to structlog's coloured console renderer and leaves the
    HTTP and extraction libraries at full verbosity.  Calling this again
    replaces the previous configuration.

    Args:
        log_level: Level name, case-insensitive.
    """
    level_name = log_level.upper()
    debug = level_name == "DEBUG"

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer(colors=True)
        if debug
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
