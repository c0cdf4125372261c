"""Shared plumbing for strategies that fetch over plain HTTP."""

from __future__ import annotations

import urllib.parse
from typing import Optional

import httpx

from read_later.config.settings import Settings, get_settings
from read_later.core.exceptions import ExtractionError, ExtractionErrorKind, UnsafeUrlError
from read_later.scraper.config import ACCEPT_HTML, HTML_CONTENT_TYPES
from read_later.scraper.http_fetcher import FetchResult, build_client, fetch_html
from read_later.scraper.strategies.base import ExtractionStrategy
from read_later.scraper.url_safety import UrlSafetyValidator


class HttpStrategy(ExtractionStrategy):
    """Base for strategies that make pinned ``httpx`` requests.

    Args:
        validator: Safety gate; every URL is validated again immediately
            before it is fetched and on every redirect hop.
        settings: Application settings (timeouts, user agent).
        client: Optional shared :class:`httpx.AsyncClient`.  One is created on
            first use when omitted and closed by :meth:`aclose`.
    """

    def __init__(
        self,
        validator: UrlSafetyValidator,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._validator = validator
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def can_handle(self, url: str) -> bool:
        return urllib.parse.urlsplit(url).scheme.lower() in ("http", "https")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_client()
        return self._client

    async def _fetch(
        self,
        url: str,
        accept: str = ACCEPT_HTML,
        content_types: tuple[str, ...] = HTML_CONTENT_TYPES,
    ) -> FetchResult:
        """Validate ``url`` again and fetch it pinned to the fresh answer.

        Raises:
            ExtractionError: ``UNSAFE_REDIRECT`` when the URL is now refused,
                or whatever :func:`fetch_html` raises.
        """
        try:
            target = await self._validator.validate_async(url)
        except UnsafeUrlError as exc:
            raise ExtractionError(
                f"URL refused on re-validation: {exc.reason.value}",
                ExtractionErrorKind.UNSAFE_REDIRECT,
            ) from exc

        return await fetch_html(
            target,
            client=self._get_client(),
            validator=self._validator,
            timeout=self._settings.http_timeout_secs,
            user_agent=self._settings.crawler_user_agent,
            max_redirects=self._settings.http_max_redirects,
            accept=accept,
            content_types=content_types,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
