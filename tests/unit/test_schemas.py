"""Unit tests for the job payload and API schemas."""

from __future__ import annotations

import uuid

import pytest
from pydantic import ValidationError

from read_later.core.schemas.article import JobPayload, ScrapeRequest


class TestJobPayload:
    def test_wire_format_uses_camel_case_keys(self) -> None:
        owner_id = uuid.uuid4()
        article_id = uuid.uuid4()
        payload = JobPayload(
            url="https://example.com/a",
            owner_id=owner_id,
            article_id=article_id,
        )
        wire = payload.to_wire()
        assert set(wire) == {"url", "owningUserId", "articleId", "attempt", "jobId", "enqueuedAt"}
        assert wire["owningUserId"] == str(owner_id)
        assert wire["articleId"] == str(article_id)
        assert wire["attempt"] == 1
        assert isinstance(wire["enqueuedAt"], str)

    def test_from_wire_parses_broker_message(self) -> None:
        owner_id = uuid.uuid4()
        article_id = uuid.uuid4()
        payload = JobPayload.from_wire(
            {
                "url": "https://example.com/a",
                "owningUserId": str(owner_id),
                "articleId": str(article_id),
                "attempt": 2,
                "jobId": "job-1",
                "enqueuedAt": "2024-05-01T12:00:00Z",
            }
        )
        assert payload.owner_id == owner_id
        assert payload.article_id == article_id
        assert payload.attempt == 2
        assert payload.job_id == "job-1"
        assert payload.enqueued_at.year == 2024

    def test_each_payload_gets_its_own_job_id(self) -> None:
        kwargs = {"url": "https://example.com/a", "owner_id": uuid.uuid4(), "article_id": uuid.uuid4()}
        assert JobPayload(**kwargs).job_id != JobPayload(**kwargs).job_id

    def test_next_attempt_keeps_job_id_and_increments_attempt(self) -> None:
        payload = JobPayload(
            url="https://example.com/a", owner_id=uuid.uuid4(), article_id=uuid.uuid4()
        )
        nxt = payload.next_attempt()
        assert nxt.attempt == 2
        assert nxt.job_id == payload.job_id
        assert nxt.article_id == payload.article_id
        assert payload.attempt == 1

    def test_attempt_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            JobPayload(
                url="https://example.com/a",
                owner_id=uuid.uuid4(),
                article_id=uuid.uuid4(),
                attempt=0,
            )

    def test_missing_article_id_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JobPayload.from_wire({"url": "https://example.com/a", "owningUserId": str(uuid.uuid4())})

    def test_payload_is_immutable(self) -> None:
        payload = JobPayload(
            url="https://example.com/a", owner_id=uuid.uuid4(), article_id=uuid.uuid4()
        )
        with pytest.raises(ValidationError):
            payload.attempt = 5  # type: ignore[misc]


class TestScrapeRequest:
    def test_force_defaults_to_false(self) -> None:
        assert ScrapeRequest(url="https://example.com").force is False

    def test_empty_url_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScrapeRequest(url="")
