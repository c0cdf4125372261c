"""Unit tests for the ingestion Celery task, the Celery job queue and the
Celery application configuration.

The worker is mocked; tasks are executed eagerly with ``Task.apply``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from read_later.config.settings import get_settings
from read_later.core.exceptions import QueueError
from read_later.core.schemas.article import JobPayload
from read_later.scraper import tasks
from read_later.scraper.queue import INGESTION_QUEUE, CeleryJobQueue, JobHandle
from read_later.scraper.worker import JobOutcome
from read_later.workers.celery_app import celery_app


def _payload(attempt: int = 1) -> JobPayload:
    return JobPayload(
        url="https://example.com/story",
        owner_id=uuid.uuid4(),
        article_id=uuid.uuid4(),
        attempt=attempt,
    )


@pytest.fixture
def process_loop() -> Iterator[None]:
    yield
    if tasks._loop is not None:
        tasks._loop.close()
        tasks._loop = None


# ---------------------------------------------------------------------------
# ingest_article_task
# ---------------------------------------------------------------------------


class TestIngestArticleTask:
    def test_runs_worker_and_reports_outcome(self, process_loop) -> None:
        worker = MagicMock()
        worker.process = AsyncMock(return_value=JobOutcome.COMPLETED)
        payload = _payload()

        with patch("read_later.scraper.tasks._build_worker", return_value=worker):
            result = tasks.ingest_article_task.apply(args=[payload.to_wire()]).get()

        assert result == {
            "job_id": payload.job_id,
            "article_id": str(payload.article_id),
            "outcome": "COMPLETED",
        }
        processed = worker.process.await_args.args[0]
        assert processed == payload

    def test_reuses_event_loop_between_tasks(self, process_loop) -> None:
        worker = MagicMock()
        worker.process = AsyncMock(return_value=JobOutcome.SKIPPED)
        with patch("read_later.scraper.tasks._build_worker", return_value=worker):
            tasks.ingest_article_task.apply(args=[_payload().to_wire()]).get()
            first_loop = tasks._loop
            tasks.ingest_article_task.apply(args=[_payload().to_wire()]).get()
        assert tasks._loop is first_loop

    def test_malformed_payload_is_rejected_without_work(self, process_loop) -> None:
        worker = MagicMock()
        worker.process = AsyncMock()
        with patch("read_later.scraper.tasks._build_worker", return_value=worker):
            result = tasks.ingest_article_task.apply(args=[{"url": "https://example.com/"}]).get()
        assert result["outcome"] == "REJECTED"
        worker.process.assert_not_awaited()

    def test_task_options(self) -> None:
        assert tasks.ingest_article_task.name == "read_later.scraper.tasks.ingest_article_task"
        assert tasks.ingest_article_task.acks_late is True
        assert tasks.ingest_article_task.max_retries == 0


class TestShutdown:
    def test_shutdown_without_loop_is_noop(self) -> None:
        tasks._loop = None
        tasks._shutdown_process_resources()
        assert tasks._loop is None

    def test_shutdown_closes_loop(self) -> None:
        loop = tasks._get_loop()
        with patch("read_later.scraper.tasks._close_resources", AsyncMock()) as close:
            tasks._shutdown_process_resources()
        close.assert_awaited_once()
        assert loop.is_closed()
        assert tasks._loop is None


# ---------------------------------------------------------------------------
# CeleryJobQueue
# ---------------------------------------------------------------------------


class TestCeleryJobQueue:
    def test_enqueue_uses_job_id_as_task_id(self) -> None:
        payload = _payload(attempt=2)
        with patch.object(tasks.ingest_article_task, "apply_async") as apply_async:
            handle = CeleryJobQueue().enqueue(payload, countdown=60)

        apply_async.assert_called_once_with(
            args=[payload.to_wire()],
            task_id=payload.job_id,
            queue=INGESTION_QUEUE,
            countdown=60,
        )
        assert handle == JobHandle(job_id=payload.job_id, attempt=2, countdown=60)

    def test_zero_countdown_is_immediate(self) -> None:
        with patch.object(tasks.ingest_article_task, "apply_async") as apply_async:
            CeleryJobQueue().enqueue(_payload())
        assert apply_async.call_args.kwargs["countdown"] is None

    def test_broker_failure_raises_queue_error(self) -> None:
        with patch.object(
            tasks.ingest_article_task, "apply_async", side_effect=ConnectionError("refused")
        ):
            with pytest.raises(QueueError):
                CeleryJobQueue().enqueue(_payload())

    def test_cancel_revokes_task(self) -> None:
        with patch.object(celery_app.control, "revoke") as revoke:
            assert CeleryJobQueue().cancel(JobHandle(job_id="job-1")) is True
        revoke.assert_called_once_with("job-1")

    def test_cancel_failure_is_reported(self) -> None:
        with patch.object(celery_app.control, "revoke", side_effect=ConnectionError("refused")):
            assert CeleryJobQueue().cancel(JobHandle(job_id="job-1")) is False


# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------


class TestCeleryConfig:
    def test_delivery_guarantees(self) -> None:
        conf = celery_app.conf
        assert conf.task_acks_late is True
        assert conf.task_reject_on_worker_lost is True
        assert conf.worker_prefetch_multiplier == 1
        assert conf.task_serializer == "json"

    def test_visibility_timeout_matches_lease(self) -> None:
        assert celery_app.conf.broker_transport_options["visibility_timeout"] == (
            get_settings().ingestion_visibility_timeout_secs
        )

    def test_task_is_routed_to_ingestion_queue(self) -> None:
        routes = celery_app.conf.task_routes
        assert routes["read_later.scraper.tasks.ingest_article_task"] == {"queue": "ingestion"}
