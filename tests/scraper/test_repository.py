"""Tests for article persistence and conditional status updates.

Runs against an in-memory SQLite database (see ``conftest.py``).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from read_later.core.exceptions import InvalidTransitionError
from read_later.core.models.article import ArticleStatus
from read_later.scraper.repository import ArticleRepository
from read_later.scraper.state_machine import ArticleEvent

URL = "https://example.com/story"


def _pending(repository: ArticleRepository, owner_id: uuid.UUID, job_id: str = "job-1"):
    record = repository.create(owner_id, URL)
    assert repository.attach_job(record.id, job_id)
    return repository.get(record.id)


class TestCreate:
    def test_create_is_pending(self, repository: ArticleRepository, owner_id) -> None:
        record = repository.create(owner_id, URL)
        assert record.status == ArticleStatus.PENDING
        assert record.attempts == 0
        assert record.cancel_requested is False
        assert record.content is None

    def test_owner_and_url_are_unique(self, repository: ArticleRepository, owner_id) -> None:
        repository.create(owner_id, URL)
        with pytest.raises(IntegrityError):
            repository.create(owner_id, URL)

    def test_same_url_for_different_owners(self, repository: ArticleRepository) -> None:
        a = repository.create(uuid.uuid4(), URL)
        b = repository.create(uuid.uuid4(), URL)
        assert a.id != b.id

    def test_explicit_article_id(self, repository: ArticleRepository, owner_id) -> None:
        article_id = uuid.uuid4()
        assert repository.create(owner_id, URL, article_id=article_id).id == article_id


class TestGetOrCreate:
    def test_second_call_returns_existing(self, repository: ArticleRepository, owner_id) -> None:
        first, created_first = repository.get_or_create(owner_id, URL)
        second, created_second = repository.get_or_create(owner_id, URL)
        assert created_first is True
        assert created_second is False
        assert first.id == second.id

    def test_lost_insert_race_converges(self, repository: ArticleRepository, owner_id) -> None:
        winner = repository.create(owner_id, URL)
        original_find = repository.find_by_owner_and_url
        calls = {"n": 0}

        def racing_find(owner, url):
            calls["n"] += 1
            # First lookup happens "before" the winner's insert.
            return None if calls["n"] == 1 else original_find(owner, url)

        repository.find_by_owner_and_url = racing_find  # type: ignore[method-assign]
        record, created = repository.get_or_create(owner_id, URL)
        assert created is False
        assert record.id == winner.id


class TestReads:
    def test_get_for_owner_is_scoped(self, repository: ArticleRepository, owner_id) -> None:
        record = repository.create(owner_id, URL)
        assert repository.get_for_owner(record.id, owner_id) is not None
        assert repository.get_for_owner(record.id, uuid.uuid4()) is None

    def test_get_missing(self, repository: ArticleRepository) -> None:
        assert repository.get(uuid.uuid4()) is None

    def test_count_by_status_is_owner_scoped(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        _pending(repository, owner_id)
        second = repository.create(owner_id, "https://example.com/other")
        repository.claim(second.id, None, lease_seconds=60)
        repository.create(uuid.uuid4(), "https://example.com/third")

        counts = repository.count_by_status(owner_id)
        assert counts == {
            ArticleStatus.PENDING: 1,
            ArticleStatus.PROCESSING: 1,
            ArticleStatus.COMPLETED: 0,
            ArticleStatus.FAILED: 0,
        }

    def test_count_by_status_without_articles(self, repository: ArticleRepository) -> None:
        assert set(repository.count_by_status(uuid.uuid4()).values()) == {0}

    def test_count_url_spans_owners(self, repository: ArticleRepository, owner_id) -> None:
        repository.create(owner_id, URL)
        repository.create(uuid.uuid4(), URL)
        assert repository.count_url(URL) == 2
        assert repository.count_url("https://example.com/unseen") == 0


class TestAttachJob:
    def test_sets_job_and_resets_attempts(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id, "job-a")
        assert record.job_id == "job-a"
        assert record.attempts == 0

    def test_only_applies_in_expected_status(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        repository.claim(record.id, "job-1", lease_seconds=60)
        assert repository.attach_job(record.id, "job-2") is False
        assert repository.get(record.id).job_id == "job-1"

    def test_is_compare_and_swap_on_current_job(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        record = _pending(repository, owner_id, "job-a")
        assert repository.attach_job(record.id, "job-b") is False
        assert repository.attach_job(record.id, "job-b", expected_job_id="job-x") is False
        assert repository.get(record.id).job_id == "job-a"

        assert repository.attach_job(record.id, None, expected_job_id="job-a") is True
        assert repository.get(record.id).job_id is None


class TestClaim:
    def test_claim_pending(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        claimed = repository.claim(record.id, "job-1", lease_seconds=60)
        assert claimed is not None
        assert claimed.status == ArticleStatus.PROCESSING
        assert claimed.processing_token
        assert claimed.lease_expires_at is not None
        assert claimed.attempts == 1

    def test_second_claim_loses(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        assert repository.claim(record.id, "job-1", lease_seconds=60) is not None
        assert repository.claim(record.id, "job-1", lease_seconds=60) is None

    def test_stale_job_id_cannot_claim(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id, "job-new")
        assert repository.claim(record.id, "job-old", lease_seconds=60) is None
        assert repository.get(record.id).status == ArticleStatus.PENDING

    def test_claim_without_job(self, repository: ArticleRepository, owner_id) -> None:
        record = repository.create(owner_id, URL)
        assert repository.claim(record.id, None, lease_seconds=60) is not None

    def test_expired_lease_is_reclaimed(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        first = repository.claim(record.id, "job-1", lease_seconds=60, now=past)
        assert first is not None

        second = repository.claim(record.id, "job-1", lease_seconds=60)
        assert second is not None
        assert second.status == ArticleStatus.PROCESSING
        assert second.processing_token != first.processing_token
        assert second.attempts == 2

    def test_live_lease_is_not_reclaimed(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        repository.claim(record.id, "job-1", lease_seconds=600)
        assert repository.claim(record.id, "job-1", lease_seconds=600) is None

    def test_terminal_record_cannot_be_claimed(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        record = _pending(repository, owner_id)
        claimed = repository.claim(record.id, "job-1", lease_seconds=60)
        repository.transition(
            record.id,
            ArticleEvent.FAIL,
            expected_status=ArticleStatus.PROCESSING,
            token=claimed.processing_token,
            fields={"failure_kind": "permanent:http_error", "failure_reason": "HTTP 404"},
        )
        assert repository.claim(record.id, "job-1", lease_seconds=60) is None


class TestTransition:
    def _claimed(self, repository: ArticleRepository, owner_id):
        record = _pending(repository, owner_id)
        return repository.claim(record.id, "job-1", lease_seconds=60)

    def test_complete_writes_content_and_clears_claim(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        claimed = self._claimed(repository, owner_id)
        done = repository.transition(
            claimed.id,
            ArticleEvent.COMPLETE,
            expected_status=ArticleStatus.PROCESSING,
            token=claimed.processing_token,
            fields={"title": "T", "content": "<p>x</p>", "reading_time": 5, "scraped_with": "LIGHTWEIGHT"},
        )
        assert done is not None
        assert done.status == ArticleStatus.COMPLETED
        assert done.title == "T"
        assert done.reading_time == 5
        assert done.processing_token is None
        assert done.lease_expires_at is None
        assert done.failure_kind is None

    def test_wrong_token_matches_nothing(self, repository: ArticleRepository, owner_id) -> None:
        claimed = self._claimed(repository, owner_id)
        result = repository.transition(
            claimed.id,
            ArticleEvent.COMPLETE,
            expected_status=ArticleStatus.PROCESSING,
            token="not-the-token",
            fields={"content": "<p>x</p>"},
        )
        assert result is None
        assert repository.get(claimed.id).status == ArticleStatus.PROCESSING

    def test_wrong_expected_status_matches_nothing(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        record = _pending(repository, owner_id)
        assert (
            repository.transition(
                record.id, ArticleEvent.RETRY, expected_status=ArticleStatus.FAILED
            )
            is None
        )

    def test_invalid_event_raises_before_writing(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        record = _pending(repository, owner_id)
        with pytest.raises(InvalidTransitionError):
            repository.transition(
                record.id, ArticleEvent.COMPLETE, expected_status=ArticleStatus.PENDING
            )

    def test_unknown_field_is_refused(self, repository: ArticleRepository, owner_id) -> None:
        claimed = self._claimed(repository, owner_id)
        with pytest.raises(ValueError):
            repository.transition(
                claimed.id,
                ArticleEvent.FAIL,
                expected_status=ArticleStatus.PROCESSING,
                fields={"owner_id": uuid.uuid4()},
            )

    def test_retry_from_completed_clears_content(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        claimed = self._claimed(repository, owner_id)
        repository.transition(
            claimed.id,
            ArticleEvent.COMPLETE,
            expected_status=ArticleStatus.PROCESSING,
            token=claimed.processing_token,
            fields={"title": "T", "content": "<p>x</p>", "reading_time": 1},
        )
        reset = repository.transition(
            claimed.id,
            ArticleEvent.RETRY,
            expected_status=ArticleStatus.COMPLETED,
            fields={"job_id": "job-2", "attempts": 0},
        )
        assert reset.status == ArticleStatus.PENDING
        assert reset.title is None
        assert reset.content is None
        assert reset.reading_time is None
        assert reset.job_id == "job-2"

    def test_fail_then_retry_clears_failure(self, repository: ArticleRepository, owner_id) -> None:
        claimed = self._claimed(repository, owner_id)
        failed = repository.transition(
            claimed.id,
            ArticleEvent.FAIL,
            expected_status=ArticleStatus.PROCESSING,
            token=claimed.processing_token,
            fields={"failure_kind": "exhausted", "failure_reason": "timeout"},
        )
        assert failed.failure_kind == "exhausted"
        reset = repository.transition(
            claimed.id, ArticleEvent.RETRY, expected_status=ArticleStatus.FAILED
        )
        assert reset.failure_kind is None
        assert reset.failure_reason is None


class TestCancellation:
    def test_request_cancel_only_while_processing(
        self, repository: ArticleRepository, owner_id
    ) -> None:
        record = _pending(repository, owner_id)
        assert repository.request_cancel(record.id) is False
        repository.claim(record.id, "job-1", lease_seconds=60)
        assert repository.request_cancel(record.id) is True
        assert repository.get(record.id).cancel_requested is True

    def test_is_cancel_requested(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        claimed = repository.claim(record.id, "job-1", lease_seconds=60)
        token = claimed.processing_token
        assert repository.is_cancel_requested(record.id, token) is False
        repository.request_cancel(record.id)
        assert repository.is_cancel_requested(record.id, token) is True

    def test_lost_claim_counts_as_cancelled(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        claimed = repository.claim(record.id, "job-1", lease_seconds=60)
        assert repository.is_cancel_requested(record.id, "other-token") is True
        repository.transition(
            record.id, ArticleEvent.RETRY, expected_status=ArticleStatus.PROCESSING
        )
        assert repository.is_cancel_requested(record.id, claimed.processing_token) is True

    def test_leaving_processing_clears_flag(self, repository: ArticleRepository, owner_id) -> None:
        record = _pending(repository, owner_id)
        claimed = repository.claim(record.id, "job-1", lease_seconds=60)
        repository.request_cancel(record.id)
        failed = repository.transition(
            record.id,
            ArticleEvent.FAIL,
            expected_status=ArticleStatus.PROCESSING,
            token=claimed.processing_token,
            fields={"failure_kind": "cancelled"},
        )
        assert failed.cancel_requested is False
