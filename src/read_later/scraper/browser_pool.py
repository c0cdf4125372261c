"""Per-process pool of Playwright browser contexts.

One Chromium instance is launched lazily per worker process and shared by all
headless renders in that process.  Each render gets its own
``BrowserContext`` (isolated cookies, cache and storage) from
:meth:`BrowserPool.acquire`; at most ``size`` contexts exist at once.

Install the browser binary once per image::

    playwright install chromium
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from read_later.scraper.config import CHROMIUM_ARGS

logger = logging.getLogger(__name__)


class BrowserPool:
    """Bounded pool of browser contexts over a single Chromium instance.

    Args:
        size: Maximum number of concurrent contexts.
        headless: Run Chromium without a window.
        launch_args: Extra Chromium command-line flags.
    """

    def __init__(
        self,
        size: int = 2,
        headless: bool = True,
        launch_args: tuple[str, ...] = CHROMIUM_ARGS,
    ) -> None:
        if size < 1:
            raise ValueError("size must be at least 1")
        self.size = size
        self.headless = headless
        self.launch_args = launch_args
        self._semaphore = asyncio.Semaphore(size)
        self._lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._active = 0

    @property
    def active_contexts(self) -> int:
        """Number of contexts currently handed out."""
        return self._active

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def start(self) -> Browser:
        """Launch Chromium if it is not running and return it."""
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                logger.warning("scraper: browser disconnected; relaunching")
                self._browser = None
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=list(self.launch_args),
            )
            logger.info(
                "scraper: launched chromium (headless=%s, pool_size=%d)",
                self.headless,
                self.size,
            )
            return self._browser

    @asynccontextmanager
    async def acquire(self, **context_options: Any) -> AsyncIterator[BrowserContext]:
        """Yield a fresh browser context, waiting for a free slot if needed.

        The context is closed on every exit path, including cancellation by
        a timeout around the ``async with`` block.

        Args:
            **context_options: Passed to ``Browser.new_context`` (user agent,
                viewport, ...).
        """
        async with self._semaphore:
            browser = await self.start()
            context = await browser.new_context(**context_options)
            self._active += 1
            try:
                yield context
            finally:
                self._active -= 1
                try:
                    await context.close()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("scraper: failed to close browser context: %s", exc)

    async def close(self) -> None:
        """Close Chromium and stop Playwright.  Safe to call more than once."""
        async with self._lock:
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None
            if browser is not None:
                try:
                    await browser.close()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("scraper: failed to close browser: %s", exc)
            if playwright is not None:
                await playwright.stop()
                logger.info("scraper: browser pool closed")
