"""FastAPI router for article ingestion.

A thin boundary over :class:`~read_later.scraper.service.ArticleIngestionService`.
Authentication is handled upstream: the hosting application's auth layer sets
``request.state.user_id`` before these routes run.

All routes are owner-scoped: users can only see and operate on their own
articles.  ``/check`` also reports how many users saved a URL, but not who.

Routes:
    POST   /articles/scrape              — submit a URL (202)
    GET    /articles/stats               — article counts per status
    GET    /articles/check?url=          — whether a URL was saved before
    GET    /articles/{article_id}        — current state of an article
    POST   /articles/{article_id}/retry  — re-queue a failed or completed article
    POST   /articles/{article_id}/cancel — cancel a queued or running job
"""

from __future__ import annotations

import uuid
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from read_later.core.exceptions import (
    ArticleNotFoundError,
    InvalidTransitionError,
    QueueError,
    UnsafeUrlError,
)
from read_later.core.models.article import ArticleRecord
from read_later.core.schemas.article import (
    ArticleRead,
    ArticleStats,
    ScrapeRequest,
    SubmitResponse,
    UrlCheckResponse,
)
from read_later.scraper.queue import CeleryJobQueue
from read_later.scraper.repository import ArticleRepository
from read_later.scraper.service import ArticleIngestionService, SubmitResult
from read_later.scraper.url_safety import UrlSafetyValidator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/articles", tags=["articles"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_current_user_id(request: Request) -> uuid.UUID:
    """Return the authenticated user's ID set by the upstream auth layer.

    Raises:
        HTTPException 401: If no user is attached to the request.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
        )
    try:
        return user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
        ) from exc


def get_ingestion_service() -> ArticleIngestionService:
    """Build the service with the production repository, queue and validator."""
    return ArticleIngestionService(
        repository=ArticleRepository(),
        queue=CeleryJobQueue(),
        validator=UrlSafetyValidator(),
    )


UserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Service = Annotated[ArticleIngestionService, Depends(get_ingestion_service)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_response(result: SubmitResult) -> SubmitResponse:
    return SubmitResponse(
        article=ArticleRead.model_validate(result.article),
        job_id=result.job.job_id if result.job else None,
        created=result.created,
    )


def _http_error(exc: Exception) -> HTTPException:
    """Map a domain exception to an HTTP error."""
    if isinstance(exc, UnsafeUrlError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "URL rejected.", "reason": exc.reason.value},
        )
    if isinstance(exc, ArticleNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, QueueError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion queue unavailable; try again later.",
        )
    raise exc


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "/scrape",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def scrape_article(payload: ScrapeRequest, user_id: UserId, service: Service) -> SubmitResponse:
    """Submit a URL for ingestion.

    Returns immediately; extraction happens on an ingestion worker.  A URL the
    user already submitted returns the existing article.

    Raises:
        HTTPException 400: If the URL is malformed or unsafe.
        HTTPException 503: If the job could not be queued.
    """
    try:
        result = service.submit(payload.url, user_id, force=payload.force)
    except (UnsafeUrlError, QueueError) as exc:
        logger.info("article_submit_rejected", user_id=str(user_id), error=str(exc))
        raise _http_error(exc) from exc

    logger.info(
        "article_submitted",
        article_id=str(result.article.id),
        user_id=str(user_id),
        created=result.created,
        status=result.article.status.value,
    )
    return _to_response(result)


@router.get("/stats", response_model=ArticleStats)
def article_stats(user_id: UserId, service: Service) -> ArticleStats:
    """Return the caller's article counts per status."""
    return service.stats(user_id)


@router.get("/check", response_model=UrlCheckResponse)
def check_url(
    user_id: UserId,
    service: Service,
    url: str = Query(min_length=1, max_length=2048),
) -> UrlCheckResponse:
    """Report whether a URL has already been saved.

    Raises:
        HTTPException 400: If the URL is malformed or not HTTP(S).
    """
    try:
        return service.check_url(url, user_id)
    except UnsafeUrlError as exc:
        raise _http_error(exc) from exc


@router.get("/{article_id}", response_model=ArticleRead)
def get_article(article_id: uuid.UUID, user_id: UserId, service: Service) -> ArticleRecord:
    """Return the current state of an article.

    Raises:
        HTTPException 404: If the article does not exist or is not owned.
    """
    try:
        return service.get(article_id, user_id)
    except ArticleNotFoundError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/{article_id}/retry",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def retry_article(
    article_id: uuid.UUID,
    user_id: UserId,
    service: Service,
    force: bool = False,
) -> SubmitResponse:
    """Re-queue a failed or completed article.

    Raises:
        HTTPException 404: If the article does not exist or is not owned.
        HTTPException 409: If the article is queued or in progress.
        HTTPException 503: If the job could not be queued.
    """
    try:
        result = service.retry(article_id, user_id, force=force)
    except (ArticleNotFoundError, InvalidTransitionError, QueueError) as exc:
        raise _http_error(exc) from exc

    logger.info("article_retried", article_id=str(article_id), user_id=str(user_id))
    return _to_response(result)


@router.post("/{article_id}/cancel", response_model=ArticleRead)
def cancel_article(article_id: uuid.UUID, user_id: UserId, service: Service) -> ArticleRecord:
    """Cancel the job of a queued or running article.

    A queued article is failed immediately; a running one stops at its next
    stage boundary.

    Raises:
        HTTPException 404: If the article does not exist or is not owned.
        HTTPException 409: If the article already completed or failed.
    """
    try:
        record = service.cancel(article_id, user_id)
    except (ArticleNotFoundError, InvalidTransitionError) as exc:
        raise _http_error(exc) from exc

    logger.info(
        "article_cancel_requested",
        article_id=str(article_id),
        user_id=str(user_id),
        status=record.status.value,
    )
    return record
