"""Headless Chromium extraction for JavaScript-rendered pages.

Every request the page makes passes through a route handler that runs the URL
safety gate on its host.  The top-level document itself is fetched through
the pinned HTTP fetcher and handed to the browser with ``route.fulfill``, so
the document comes from exactly the address that was validated and its
redirects are re-validated hop by hop.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Optional

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Request, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from read_later.config.settings import Settings, get_settings
from read_later.core.exceptions import ExtractionError, ExtractionErrorKind, UnsafeUrlError
from read_later.scraper.browser_pool import BrowserPool
from read_later.scraper.config import IMAGE_RESOURCE_TYPES, MIN_CONTENT_LENGTH
from read_later.scraper.content_extractor import extract_article
from read_later.scraper.http_fetcher import build_client, classify_status, fetch_html
from read_later.scraper.strategies.base import ExtractionResult, ExtractionStrategy
from read_later.scraper.url_safety import SafeUrl, UrlSafetyValidator

logger = logging.getLogger(__name__)

_PASSTHROUGH_SCHEMES: frozenset[str] = frozenset({"data", "blob", "about"})


@dataclass
class _RenderState:
    documents: int = 0
    final_url: Optional[str] = None
    document_error: Optional[ExtractionError] = None
    blocked: Optional[str] = None


class HeadlessStrategy(ExtractionStrategy):
    """Render the page in Chromium, then extract the rendered DOM.

    Args:
        pool: Per-process browser pool.
        validator: Safety gate applied to every browser request.
        settings: Application settings (crawler options).
        client: Optional shared :class:`httpx.AsyncClient` for top-level
            document fetches.
        min_content_length: Minimum extracted text length, in characters.
    """

    name = "HEADLESS"
    priority = 20

    def __init__(
        self,
        pool: BrowserPool,
        validator: UrlSafetyValidator,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ) -> None:
        self._pool = pool
        self._validator = validator
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._min_content_length = min_content_length

    def can_handle(self, url: str) -> bool:
        return urllib.parse.urlsplit(url).scheme.lower() in ("http", "https")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_client()
        return self._client

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        timeout = self._settings.crawler_request_timeout_secs
        try:
            html, final_url = await asyncio.wait_for(self._render(target), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("scraper: headless render timed out after %ds for %s", timeout, target.url)
            raise ExtractionError(
                f"headless render exceeded {timeout}s",
                ExtractionErrorKind.TIMEOUT,
            ) from exc

        article = await asyncio.to_thread(extract_article, html, final_url)
        if article.from_fallback:
            logger.info("scraper: no article body in rendered page for %s", target.url)
            raise ExtractionError("no article body found", ExtractionErrorKind.EMPTY_CONTENT)
        text_len = len(article.text_content or "")
        if not article.content or text_len < self._min_content_length:
            logger.info(
                "scraper: rendered text too short for %s (len=%d)", target.url, text_len
            )
            raise ExtractionError(
                f"rendered text too short ({text_len} chars)",
                ExtractionErrorKind.EMPTY_CONTENT,
            )
        return ExtractionResult.from_extracted(article, final_url=final_url)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _context_options(self) -> dict:
        s = self._settings
        return {
            "user_agent": s.crawler_user_agent,
            "viewport": {"width": s.crawler_viewport_width, "height": s.crawler_viewport_height},
            "java_script_enabled": True,
            "service_workers": "block",
            "accept_downloads": False,
        }

    async def _render(self, target: SafeUrl) -> tuple[str, str]:
        s = self._settings
        state = _RenderState()

        async with self._pool.acquire(**self._context_options()) as context:

            async def handle_route(route: Route, request: Request) -> None:
                await self._handle_route(route, request, state)

            await context.route("**/*", handle_route)
            page = await context.new_page()
            try:
                response = await page.goto(
                    target.url,
                    wait_until="networkidle",
                    timeout=s.crawler_request_timeout_secs * 1000,
                )
            except PlaywrightTimeoutError as exc:
                raise ExtractionError(
                    "navigation timed out", ExtractionErrorKind.TIMEOUT
                ) from exc
            except PlaywrightError as exc:
                if state.document_error is not None:
                    raise state.document_error from exc
                if state.blocked is not None:
                    raise ExtractionError(
                        f"navigation to unsafe URL refused: {state.blocked}",
                        ExtractionErrorKind.UNSAFE_REDIRECT,
                    ) from exc
                raise ExtractionError(
                    f"navigation failed: {exc}", ExtractionErrorKind.CONNECTION
                ) from exc

            if state.document_error is not None:
                raise state.document_error
            if response is not None and response.status >= 400:
                raise ExtractionError(
                    f"HTTP {response.status}",
                    classify_status(response.status),
                    status_code=response.status,
                )

            if s.crawler_wait_time_ms:
                await page.wait_for_timeout(s.crawler_wait_time_ms)

            html = await page.content()
            final_url = state.final_url or page.url
        return html, final_url

    async def _handle_route(self, route: Route, request: Request, state: _RenderState) -> None:
        url = request.url
        scheme = urllib.parse.urlsplit(url).scheme.lower()
        if scheme in _PASSTHROUGH_SCHEMES:
            await route.continue_()
            return

        if not self._settings.crawler_enable_images and request.resource_type in IMAGE_RESOURCE_TYPES:
            await route.abort("blockedbyclient")
            return

        is_top_document = (
            request.is_navigation_request() and request.frame.parent_frame is None
        )

        try:
            safe = await self._validator.validate_async(url)
        except UnsafeUrlError as exc:
            logger.warning("scraper: blocked browser request to %s (%s)", url, exc.reason.value)
            if is_top_document:
                state.blocked = exc.reason.value
            await route.abort("blockedbyclient")
            return

        if not is_top_document:
            await route.continue_()
            return

        state.documents += 1
        if state.documents > self._settings.crawler_max_requests_per_crawl:
            logger.info("scraper: navigation cap reached, blocking %s", url)
            await route.abort("blockedbyclient")
            return

        try:
            fetched = await fetch_html(
                safe,
                client=self._get_client(),
                validator=self._validator,
                timeout=self._settings.http_timeout_secs,
                user_agent=self._settings.crawler_user_agent,
                max_redirects=self._settings.http_max_redirects,
            )
        except ExtractionError as exc:
            state.document_error = exc
            await route.abort("failed")
            return

        state.final_url = fetched.final_url
        await route.fulfill(
            status=fetched.status_code,
            content_type=fetched.content_type or "text/html",
            body=fetched.body,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
