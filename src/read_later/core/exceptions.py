"""Application-wide exception hierarchy for Read Later.

All custom exceptions subclass ``ReadLaterError``, enabling consistent error
handling and structured logging across the ingestion pipeline.

Hierarchy::

    ReadLaterError
    ├── UnsafeUrlError           (reason: RejectionReason)
    ├── ExtractionError          (kind: ExtractionErrorKind, strategy, status_code)
    ├── AggregateExtractionError (failures: list[(strategy, ExtractionError)])
    ├── JobCancelledError
    ├── InvalidTransitionError   (status, event)
    ├── ArticleNotFoundError
    └── QueueError
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from read_later.core.models.article import ArticleStatus
    from read_later.scraper.state_machine import ArticleEvent


# ---------------------------------------------------------------------------
# Classification enums
# ---------------------------------------------------------------------------


class RejectionReason(str, enum.Enum):
    """Why the URL safety gate refused a URL.  Always terminal, never retried."""

    INVALID_URL = "invalid_url"
    INVALID_SCHEME = "invalid_scheme"
    PRIVATE_ADDRESS = "private_address"
    METADATA_HOST = "metadata_host"
    UNRESOLVABLE_HOST = "unresolvable_host"
    FLAGGED_BY_REPUTATION = "flagged_by_reputation"


class ExtractionErrorKind(str, enum.Enum):
    """Failure kinds reported by extraction strategies."""

    # transient
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    UNEXPECTED = "unexpected"
    # permanent
    HTTP_ERROR = "http_error"
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"
    EMPTY_CONTENT = "empty_content"
    UNSAFE_REDIRECT = "unsafe_redirect"


TRANSIENT_KINDS: frozenset[ExtractionErrorKind] = frozenset(
    {
        ExtractionErrorKind.TIMEOUT,
        ExtractionErrorKind.CONNECTION,
        ExtractionErrorKind.SERVER_ERROR,
        ExtractionErrorKind.RATE_LIMITED,
        ExtractionErrorKind.UNEXPECTED,
    }
)


class ReadLaterError(Exception):
    """Base class for all Read Later exceptions."""


# ---------------------------------------------------------------------------
# Safety gate
# ---------------------------------------------------------------------------


class UnsafeUrlError(ReadLaterError):
    """Raised when a URL is refused by the safety gate.

    Args:
        reason: Typed rejection reason.
        url: The rejected URL (for logging).
        detail: Optional human-readable detail (e.g. the offending address).
    """

    def __init__(
        self,
        reason: RejectionReason,
        url: str | None = None,
        detail: str | None = None,
    ) -> None:
        msg = f"URL rejected: {reason.value}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
        self.reason = reason
        self.url = url
        self.detail = detail


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class ExtractionError(ReadLaterError):
    """Raised by a strategy when it could not produce an article.

    Args:
        message: Human-readable description of the failure.
        kind: Failure classification; decides whether the job is retried.
        strategy: Name of the strategy that failed.
        status_code: Upstream HTTP status, when one was received.
    """

    def __init__(
        self,
        message: str,
        kind: ExtractionErrorKind,
        strategy: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.strategy = strategy
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class AggregateExtractionError(ReadLaterError):
    """Raised when every candidate strategy failed.

    The aggregate is transient when at least one strategy failed for a
    transient reason, since a later attempt may then succeed.

    Args:
        failures: ``(strategy_name, error)`` pairs in the order they were tried.
    """

    def __init__(self, failures: list[tuple[str, ExtractionError]]) -> None:
        if failures:
            summary = "; ".join(
                f"{name}: {err.kind.value} ({err})" for name, err in failures
            )
            msg = f"All extraction strategies failed: {summary}"
        else:
            msg = "No extraction strategy can handle this URL"
        super().__init__(msg)
        self.failures = failures

    @property
    def transient(self) -> bool:
        return any(err.transient for _, err in self.failures)

    @property
    def kind(self) -> ExtractionErrorKind:
        """The most relevant kind: the first transient one, else the last one."""
        for _, err in self.failures:
            if err.transient:
                return err.kind
        if self.failures:
            return self.failures[-1][1].kind
        return ExtractionErrorKind.UNSUPPORTED_CONTENT_TYPE


class JobCancelledError(ReadLaterError):
    """Raised between pipeline stages when cancellation has been requested."""


# ---------------------------------------------------------------------------
# State / persistence
# ---------------------------------------------------------------------------


class InvalidTransitionError(ReadLaterError):
    """Raised when an event is not permitted from the current status.

    Args:
        status: Current article status.
        event: Event that was applied.
    """

    def __init__(self, status: ArticleStatus, event: ArticleEvent) -> None:
        super().__init__(
            f"Event {event.value} is not permitted from status {status.value}"
        )
        self.status = status
        self.event = event


class ArticleNotFoundError(ReadLaterError):
    """Raised when an article does not exist or is not owned by the caller."""

    def __init__(self, article_id: object) -> None:
        super().__init__(f"Article '{article_id}' not found")
        self.article_id = article_id


class QueueError(ReadLaterError):
    """Raised when the job broker refuses an enqueue or cancellation."""
