"""Unit tests for the lightweight and headless extraction strategies.

The lightweight strategy runs against respx-mocked HTTP.  The headless
strategy runs against mocked Playwright objects; no browser is launched.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import respx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from read_later.config.settings import Settings, get_settings
from read_later.core.exceptions import ExtractionError, ExtractionErrorKind
from read_later.scraper.http_fetcher import FetchResult
from read_later.scraper.strategies.headless import HeadlessStrategy, _RenderState
from read_later.scraper.strategies.lightweight import LightweightStrategy

_HTML_HEADERS = {"content-type": "text/html; charset=utf-8"}


def _settings(**overrides: Any) -> Settings:
    return get_settings().model_copy(update=overrides)


# ---------------------------------------------------------------------------
# LightweightStrategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestLightweightStrategy:
    async def test_extracts_article(self, validator, article_html: str) -> None:
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock(base_url="https://93.184.216.34") as mock:
            mock.get("/news/transit").mock(
                return_value=httpx.Response(200, text=article_html, headers=_HTML_HEADERS)
            )
            result = await strategy.extract(validator.validate("https://example.com/news/transit"))
        await strategy.aclose()

        assert result.content
        assert "public transport network" in (result.text_content or "")
        assert result.final_url == "https://example.com/news/transit"
        assert result.favicon == "https://example.com/static/favicon.png"
        assert result.reading_time is None

    async def test_js_shell_is_empty_content(self, validator) -> None:
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock(base_url="https://93.184.216.34") as mock:
            mock.get("/app").mock(
                return_value=httpx.Response(
                    200,
                    text='<html><body><div id="root"></div></body></html>',
                    headers=_HTML_HEADERS,
                )
            )
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.EMPTY_CONTENT
        assert exc_info.value.transient is False

    async def test_short_text_is_empty_content(self, validator) -> None:
        html = (
            "<html><head><script>" + ("var a = 1;" * 100) + "</script></head>"
            "<body><p>Hi</p></body></html>"
        )
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock(base_url="https://93.184.216.34") as mock:
            mock.get("/thin").mock(
                return_value=httpx.Response(200, text=html, headers=_HTML_HEADERS)
            )
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(validator.validate("https://example.com/thin"))
        assert exc_info.value.kind == ExtractionErrorKind.EMPTY_CONTENT

    async def test_boilerplate_only_page_is_empty_content(self, validator) -> None:
        nav = "".join(f'<li><a href="/s/{i}">Section number {i}</a></li>' for i in range(40))
        html = (
            f"<html><body><nav><ul>{nav}</ul></nav>"
            "<footer>All rights reserved</footer></body></html>"
        )
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock(base_url="https://93.184.216.34") as mock:
            mock.get("/portal").mock(
                return_value=httpx.Response(200, text=html, headers=_HTML_HEADERS)
            )
            with patch(
                "read_later.scraper.content_extractor.trafilatura.extract", return_value=None
            ):
                with pytest.raises(ExtractionError) as exc_info:
                    await strategy.extract(validator.validate("https://example.com/portal"))
        assert exc_info.value.kind == ExtractionErrorKind.EMPTY_CONTENT
        assert exc_info.value.status_code == 200

    async def test_revalidates_before_fetching(self, validator, resolver) -> None:
        target = validator.validate("https://example.com/story")
        resolver.hosts["example.com"] = ["192.168.1.1"]
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock() as mock:
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(target)
            assert not mock.calls
        assert exc_info.value.kind == ExtractionErrorKind.UNSAFE_REDIRECT

    async def test_http_errors_propagate(self, validator) -> None:
        strategy = LightweightStrategy(validator, settings=_settings())
        with respx.mock(base_url="https://93.184.216.34") as mock:
            mock.get("/gone").mock(return_value=httpx.Response(410))
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(validator.validate("https://example.com/gone"))
        assert exc_info.value.kind == ExtractionErrorKind.HTTP_ERROR

    async def test_aclose_only_closes_owned_client(self, validator) -> None:
        shared = MagicMock()
        shared.aclose = AsyncMock()
        strategy = LightweightStrategy(validator, settings=_settings(), client=shared)
        await strategy.aclose()
        shared.aclose.assert_not_awaited()

    async def test_can_handle(self, validator) -> None:
        strategy = LightweightStrategy(validator, settings=_settings())
        assert strategy.can_handle("https://example.com/") is True
        assert strategy.can_handle("ftp://example.com/") is False


# ---------------------------------------------------------------------------
# HeadlessStrategy helpers
# ---------------------------------------------------------------------------


def _request(
    url: str,
    resource_type: str = "document",
    navigation: bool = True,
    top_level: bool = True,
) -> MagicMock:
    request = MagicMock()
    request.url = url
    request.resource_type = resource_type
    request.is_navigation_request.return_value = navigation
    request.frame.parent_frame = None if top_level else MagicMock()
    return request


def _route() -> MagicMock:
    route = MagicMock()
    route.continue_ = AsyncMock()
    route.abort = AsyncMock()
    route.fulfill = AsyncMock()
    return route


class _FakePool:
    def __init__(self, context: MagicMock) -> None:
        self.context = context
        self.options: Optional[dict] = None

    @asynccontextmanager
    async def acquire(self, **options: Any):
        self.options = options
        yield self.context


def _fake_context(html: str, status: int = 200, goto_error: Optional[Exception] = None):
    page = MagicMock()
    page.url = "https://example.com/app"
    response = MagicMock()
    response.status = status
    page.goto = AsyncMock(return_value=response, side_effect=goto_error)
    page.content = AsyncMock(return_value=html)
    page.wait_for_timeout = AsyncMock()

    context = MagicMock()
    context.route = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    return context, page


# ---------------------------------------------------------------------------
# HeadlessStrategy route handler
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestHeadlessRouteHandler:
    def _strategy(self, validator, **overrides: Any) -> HeadlessStrategy:
        return HeadlessStrategy(MagicMock(), validator, settings=_settings(**overrides))

    async def test_data_urls_pass_through(self, validator) -> None:
        route = _route()
        await self._strategy(validator)._handle_route(
            route, _request("data:image/png;base64,AAAA", "image", False, False), _RenderState()
        )
        route.continue_.assert_awaited_once()

    async def test_images_blocked_when_disabled(self, validator) -> None:
        route = _route()
        strategy = self._strategy(validator, crawler_enable_images=False)
        await strategy._handle_route(
            route, _request("https://example.com/a.png", "image", False, False), _RenderState()
        )
        route.abort.assert_awaited_once_with("blockedbyclient")

    async def test_subresource_to_private_host_is_blocked(self, validator) -> None:
        route = _route()
        state = _RenderState()
        await self._strategy(validator)._handle_route(
            route, _request("http://internal.example.com/api", "xhr", False, False), state
        )
        route.abort.assert_awaited_once_with("blockedbyclient")
        route.continue_.assert_not_awaited()
        assert state.blocked is None

    async def test_subresource_to_metadata_is_blocked(self, validator) -> None:
        route = _route()
        await self._strategy(validator)._handle_route(
            route,
            _request("http://169.254.169.254/latest/meta-data/", "fetch", False, False),
            _RenderState(),
        )
        route.abort.assert_awaited_once_with("blockedbyclient")

    async def test_safe_subresource_continues(self, validator) -> None:
        route = _route()
        await self._strategy(validator)._handle_route(
            route, _request("https://cdn.example.net/app.js", "script", False, False), _RenderState()
        )
        route.continue_.assert_awaited_once()

    async def test_unsafe_top_document_records_reason(self, validator) -> None:
        route = _route()
        state = _RenderState()
        await self._strategy(validator)._handle_route(
            route, _request("http://127.0.0.1/"), state
        )
        route.abort.assert_awaited_once_with("blockedbyclient")
        assert state.blocked == "private_address"

    async def test_top_document_is_served_from_pinned_fetch(self, validator) -> None:
        route = _route()
        state = _RenderState()
        fetched = FetchResult(
            html="<html></html>",
            body=b"<html></html>",
            status_code=200,
            final_url="https://example.com/final",
            content_type="text/html",
        )
        with patch(
            "read_later.scraper.strategies.headless.fetch_html",
            AsyncMock(return_value=fetched),
        ) as fetch:
            await self._strategy(validator)._handle_route(
                route, _request("https://example.com/app"), state
            )
        assert fetch.await_args.args[0].addresses == ("93.184.216.34",)
        route.fulfill.assert_awaited_once_with(
            status=200, content_type="text/html", body=b"<html></html>"
        )
        route.continue_.assert_not_awaited()
        assert state.final_url == "https://example.com/final"

    async def test_top_document_fetch_failure_is_recorded(self, validator) -> None:
        route = _route()
        state = _RenderState()
        error = ExtractionError("HTTP 503", ExtractionErrorKind.SERVER_ERROR, status_code=503)
        with patch(
            "read_later.scraper.strategies.headless.fetch_html",
            AsyncMock(side_effect=error),
        ):
            await self._strategy(validator)._handle_route(
                route, _request("https://example.com/app"), state
            )
        route.abort.assert_awaited_once_with("failed")
        assert state.document_error is error

    async def test_navigation_cap(self, validator) -> None:
        route = _route()
        state = _RenderState(documents=1)
        await self._strategy(validator, crawler_max_requests_per_crawl=1)._handle_route(
            route, _request("https://example.com/next"), state
        )
        route.abort.assert_awaited_once_with("blockedbyclient")


# ---------------------------------------------------------------------------
# HeadlessStrategy extraction
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestHeadlessExtract:
    async def test_renders_and_extracts(self, validator, article_html: str) -> None:
        context, page = _fake_context(article_html)
        pool = _FakePool(context)
        strategy = HeadlessStrategy(pool, validator, settings=_settings(crawler_wait_time_ms=0))

        result = await strategy.extract(validator.validate("https://example.com/app"))

        assert "public transport network" in (result.text_content or "")
        context.route.assert_awaited_once()
        assert context.route.await_args.args[0] == "**/*"
        page.goto.assert_awaited_once()
        page.wait_for_timeout.assert_not_awaited()
        assert pool.options["user_agent"] == get_settings().crawler_user_agent
        assert pool.options["service_workers"] == "block"

    async def test_waits_configured_time(self, validator, article_html: str) -> None:
        context, page = _fake_context(article_html)
        strategy = HeadlessStrategy(
            _FakePool(context), validator, settings=_settings(crawler_wait_time_ms=250)
        )
        await strategy.extract(validator.validate("https://example.com/app"))
        page.wait_for_timeout.assert_awaited_once_with(250)

    async def test_error_status(self, validator, article_html: str) -> None:
        context, _ = _fake_context(article_html, status=404)
        strategy = HeadlessStrategy(
            _FakePool(context), validator, settings=_settings(crawler_wait_time_ms=0)
        )
        with pytest.raises(ExtractionError) as exc_info:
            await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.HTTP_ERROR

    async def test_navigation_timeout(self, validator) -> None:
        context, _ = _fake_context("", goto_error=PlaywrightTimeoutError("Timeout 60000ms"))
        strategy = HeadlessStrategy(_FakePool(context), validator, settings=_settings())
        with pytest.raises(ExtractionError) as exc_info:
            await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.TIMEOUT

    async def test_hard_timeout(self, validator) -> None:
        strategy = HeadlessStrategy(
            MagicMock(), validator, settings=_settings(crawler_request_timeout_secs=1)
        )

        async def hang(target):
            await asyncio.sleep(5)

        with patch.object(strategy, "_render", hang):
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.TIMEOUT
        assert exc_info.value.transient is True

    async def test_rendered_shell_is_empty_content(self, validator) -> None:
        context, _ = _fake_context('<html><body><div id="root"></div></body></html>')
        strategy = HeadlessStrategy(
            _FakePool(context), validator, settings=_settings(crawler_wait_time_ms=0)
        )
        with pytest.raises(ExtractionError) as exc_info:
            await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.EMPTY_CONTENT

    async def test_rendered_boilerplate_is_empty_content(self, validator) -> None:
        footer = "<p>" + ("Terms of use and privacy policy. " * 20) + "</p>"
        context, _ = _fake_context(f"<html><body><footer>{footer}</footer></body></html>")
        strategy = HeadlessStrategy(
            _FakePool(context), validator, settings=_settings(crawler_wait_time_ms=0)
        )
        with patch(
            "read_later.scraper.content_extractor.trafilatura.extract", return_value=None
        ):
            with pytest.raises(ExtractionError) as exc_info:
                await strategy.extract(validator.validate("https://example.com/app"))
        assert exc_info.value.kind == ExtractionErrorKind.EMPTY_CONTENT
