"""Celery application for Read Later.

Configures the broker, result backend, serialization, task routing and
delivery guarantees.  All configuration values are sourced from ``Settings``
so that no secrets or environment-specific values are hard-coded here.

Usage (starting an ingestion worker)::

    celery -A read_later.workers.celery_app worker -Q ingestion --loglevel=info

Usage (within application code)::

    from read_later.workers.celery_app import celery_app

    celery_app.control.revoke(job_id)
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import setup_logging, worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env values into os.environ so Celery's own CLI options and Settings
# see the same values.
load_dotenv()

from read_later.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "read_later",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "read_later.scraper.tasks",
    ],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Serialization: JSON keeps job payloads inspectable and avoids pickle.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Acknowledge only after the task body returns, and re-queue the message
    # if the worker process dies mid-task.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Headless renders are long; one message per worker process at a time.
    worker_prefetch_multiplier=1,
    # An unacknowledged message becomes visible again after this long.  Kept
    # equal to the claim lease so a redelivered job finds the claim stale.
    broker_transport_options={
        "visibility_timeout": settings.ingestion_visibility_timeout_secs,
    },
    result_expires=86_400,
    task_soft_time_limit=settings.crawler_request_timeout_secs * 4,
    task_time_limit=settings.crawler_request_timeout_secs * 5,
    task_routes={
        "read_later.scraper.tasks.ingest_article_task": {"queue": "ingestion"},
    },
)


# ---------------------------------------------------------------------------
# Logging: route Celery's own logging through structlog
# ---------------------------------------------------------------------------
@setup_logging.connect
def _configure_worker_logging(**kwargs: object) -> None:  # noqa: ARG001
    """Replace Celery's logging setup with the application's structlog config."""
    from read_later.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(get_settings().log_level)


# ---------------------------------------------------------------------------
# Engine disposal on fork
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _dispose_engine_on_fork(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the SQLAlchemy pool inherited from the parent process.

    Connections opened before ``fork()`` must not be shared with the child.
    """
    from read_later.core import database as _db  # noqa: PLC0415

    _db.dispose_engine()
