"""Celery task for article ingestion.

``ingest_article_task``
    Decodes a :class:`~read_later.core.schemas.article.JobPayload` and hands
    it to :class:`~read_later.scraper.worker.IngestionWorker`.  The worker
    never raises, so the message is acknowledged once the task returns;
    re-delivery after a transient failure is an explicit new message with a
    countdown, not a Celery retry.

Task naming convention::

    read_later.scraper.tasks.<action>

Event loop:
    Each worker process keeps one event loop for its lifetime, so the
    Playwright browser launched by the first headless render is reused by
    later tasks.  The loop and the browser are closed on process shutdown.

Database updates:
    All DB writes use a synchronous session (``get_sync_session()``).
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Optional

from celery.signals import worker_process_shutdown
from pydantic import ValidationError

from read_later.config.settings import get_settings
from read_later.core.event_bus import redis_publisher
from read_later.core.schemas.article import JobPayload
from read_later.scraper.browser_pool import BrowserPool
from read_later.scraper.queue import CeleryJobQueue
from read_later.scraper.repository import ArticleRepository
from read_later.scraper.safe_browsing import SafeBrowsingClient
from read_later.scraper.strategies.document import PdfStrategy
from read_later.scraper.strategies.feed import FeedStrategy
from read_later.scraper.strategies.headless import HeadlessStrategy
from read_later.scraper.strategies.lightweight import LightweightStrategy
from read_later.scraper.strategies.selector import StrategySelector
from read_later.scraper.strategies.youtube import YouTubeStrategy
from read_later.scraper.url_safety import UrlSafetyValidator
from read_later.scraper.worker import IngestionWorker, RetryPolicy
from read_later.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_loop: Optional[asyncio.AbstractEventLoop] = None


# ---------------------------------------------------------------------------
# Per-process resources
# ---------------------------------------------------------------------------


def _get_loop() -> asyncio.AbstractEventLoop:
    """Return this process's event loop, creating it on first use."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop


@lru_cache(maxsize=1)
def _browser_pool() -> BrowserPool:
    settings = get_settings()
    return BrowserPool(
        size=settings.browser_pool_size,
        headless=settings.crawler_headless,
    )


@lru_cache(maxsize=1)
def _build_worker() -> IngestionWorker:
    """Assemble the worker and its collaborators once per process."""
    settings = get_settings()
    validator = UrlSafetyValidator()
    selector = StrategySelector(
        [
            YouTubeStrategy(validator, settings=settings),
            FeedStrategy(validator, settings=settings),
            PdfStrategy(validator, settings=settings),
            LightweightStrategy(validator, settings=settings),
            HeadlessStrategy(_browser_pool(), validator, settings=settings),
        ]
    )
    reputation = (
        SafeBrowsingClient(settings.safe_browsing_api_key)
        if settings.safe_browsing_api_key
        else None
    )
    return IngestionWorker(
        repository=ArticleRepository(),
        validator=validator,
        selector=selector,
        queue=CeleryJobQueue(),
        policy=RetryPolicy.from_settings(settings),
        publish=redis_publisher(settings.redis_url),
        reputation=reputation,
    )


async def _close_resources() -> None:
    if _build_worker.cache_info().currsize:
        worker = _build_worker()
        await worker.aclose()
    if _browser_pool.cache_info().currsize:
        await _browser_pool().close()


@worker_process_shutdown.connect
def _shutdown_process_resources(**kwargs: object) -> None:  # noqa: ARG001
    """Close the browser and HTTP clients before the worker process exits."""
    global _loop
    if _loop is None or _loop.is_closed():
        return
    try:
        _loop.run_until_complete(_close_resources())
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: error while closing worker resources: %s", exc)
    finally:
        _loop.close()
        _loop = None


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    name="read_later.scraper.tasks.ingest_article_task",
    bind=True,
    acks_late=True,
    max_retries=0,
)
def ingest_article_task(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """Run one delivery of an ingestion job.

    Args:
        payload: Wire form of a :class:`~read_later.core.schemas.article.JobPayload`.

    Returns:
        Dict with ``job_id``, ``article_id`` and the ``outcome``.
    """
    try:
        job = JobPayload.from_wire(payload)
    except ValidationError as exc:
        logger.error(
            "scraper: discarding malformed job payload (task=%s): %s", self.request.id, exc
        )
        return {"job_id": self.request.id, "article_id": None, "outcome": "REJECTED"}

    logger.info(
        "scraper: ingest_article_task started for article=%s job=%s attempt=%d",
        job.article_id,
        job.job_id,
        job.attempt,
    )
    outcome = _get_loop().run_until_complete(_build_worker().process(job))
    return {"job_id": job.job_id, "article_id": str(job.article_id), "outcome": outcome.value}
