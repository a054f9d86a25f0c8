"""Playwright-backed page renderer.

Pages are rendered in a real browser, the DOM is serialized to HTML once
the page reports ready, and only that snapshot leaves this module. The
pipeline and the extractor never hold a live Page or ElementHandle.

Lifecycle:
- PlaywrightRenderer.open() starts Playwright, launches the browser and
  creates one browser context for the run.
- PlaywrightSession.page() opens a tab scoped to one unit of work
  (an entity's pagination loop, or a discovery run).
- PlaywrightPage.fetch() navigates and snapshots.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    async_playwright,
)
from playwright.async_api import (
    Error as PlaywrightError,
)
from playwright.async_api import (
    TimeoutError as PlaywrightTimeoutError,
)

from gleaner.common.exceptions import NavigationError
from gleaner.config import RendererConfig
from gleaner.data_types import RenderedPage
from gleaner.throttle import NavigationLimiter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

# Statuses worth retrying; anything else is handed to the extractor as-is.
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class PlaywrightPage:
    """One browser tab."""

    def __init__(
        self,
        page: Page,
        config: RendererConfig,
        limiter: NavigationLimiter | None = None,
    ) -> None:
        self._page = page
        self.config = config
        self.limiter = limiter

    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        """Navigate to ``url`` and snapshot the DOM.

        Args:
            url: Absolute URL to load.
            timeout_ms: Navigation timeout (default: config value).

        Returns:
            RenderedPage with the serialized document.

        Raises:
            NavigationError: On timeout, network failure or a retryable
                HTTP status.
        """
        timeout = timeout_ms or self.config.navigation_timeout_ms

        if self.limiter is not None:
            await self.limiter.acquire()

        started = time.monotonic()
        try:
            response = await self._page.goto(
                url, wait_until=self.config.wait_until, timeout=timeout
            )
            html_content = await self._page.content()
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, str(e), timeout_ms=timeout) from e
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

        if response is not None and response.status in RETRYABLE_STATUS_CODES:
            raise NavigationError(url, f"HTTP {response.status}")

        logger.debug(
            f"Rendered {url} in {time.monotonic() - started:.2f}s "
            f"({len(html_content)} bytes)"
        )
        return RenderedPage(
            url=self._page.url, html=html_content, requested_url=url
        )


class PlaywrightSession:
    """A browser context shared by every page handle in one phase."""

    def __init__(
        self,
        browser_context: BrowserContext,
        config: RendererConfig,
        limiter: NavigationLimiter | None = None,
    ) -> None:
        self.browser_context = browser_context
        self.config = config
        self.limiter = limiter
        self.pages_opened = 0

    @asynccontextmanager
    async def page(self) -> AsyncIterator[PlaywrightPage]:
        """Open a tab for one unit of work and close it afterwards."""
        page = await self.browser_context.new_page()
        self.pages_opened += 1
        try:
            yield PlaywrightPage(page, self.config, self.limiter)
        finally:
            await page.close()

    async def fetch(
        self, url: str, timeout_ms: int | None = None
    ) -> RenderedPage:
        async with self.page() as tab:
            return await tab.fetch(url, timeout_ms)


class PlaywrightRenderer:
    """Factory for Playwright sessions.

    Example:
        renderer = PlaywrightRenderer(RendererConfig(headless=True))
        async with renderer.open() as session:
            async with session.page() as tab:
                snapshot = await tab.fetch("https://example.com")
    """

    def __init__(self, config: RendererConfig | None = None) -> None:
        self.config = config or RendererConfig()
        self.sessions_opened = 0

    def _make_limiter(self) -> NavigationLimiter | None:
        if self.config.max_navigations_per_minute is None:
            return None
        return NavigationLimiter(self.config.max_navigations_per_minute)

    @asynccontextmanager
    async def open(self) -> AsyncIterator[PlaywrightSession]:
        """Launch the browser and yield a session.

        Browser, context and Playwright itself are torn down in reverse
        order when the context exits, whether or not the body raised.
        """
        config = self.config
        logger.info(
            f"Launching {config.browser_type} "
            f"({'headless' if config.headless else 'headed'})"
        )
        playwright = await async_playwright().start()
        try:
            browser_launcher = getattr(playwright, config.browser_type)
            browser: Browser = await browser_launcher.launch(
                headless=config.headless, args=config.launch_args
            )
            try:
                context_kwargs: dict[str, Any] = {
                    "viewport": {
                        "width": config.viewport_width,
                        "height": config.viewport_height,
                    },
                    "locale": config.locale,
                }
                if config.user_agent:
                    context_kwargs["user_agent"] = config.user_agent

                browser_context = await browser.new_context(**context_kwargs)
                browser_context.set_default_navigation_timeout(
                    config.navigation_timeout_ms
                )
                try:
                    self.sessions_opened += 1
                    yield PlaywrightSession(
                        browser_context, config, self._make_limiter()
                    )
                finally:
                    await browser_context.close()
            finally:
                await browser.close()
        finally:
            await playwright.stop()
            logger.debug("Browser closed")
