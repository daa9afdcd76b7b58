"""
Browser Session Module
======================

Owns the Playwright browser and the single browsing context used for one
store's crawl. Disposal of pages, contexts and browsers is always bounded
by a timeout so a wedged renderer can never hang the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from rent_sync.ingestion.registry import BrowserConfig, TimeoutConfig

logger = logging.getLogger(__name__)

HIDE_WEBDRIVER_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => false });"


async def close_quietly(closing: Awaitable[Any], timeout: float, label: str) -> None:
    """
    Await a close/dispose call for at most ``timeout`` seconds.

    Failures and timeouts are logged and dropped; disposal must never
    replace the outcome of the work it cleans up after.
    """
    try:
        await asyncio.wait_for(closing, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Closing {label} timed out after {timeout:g}s, abandoning it")
    except PlaywrightError as e:
        logger.debug(f"Closing {label} failed: {e}")


class BrowserSession:
    """
    Chromium browser plus one stealth-configured context.

    Use as an async context manager:

        async with BrowserSession(browser_config, timeouts) as session:
            page = await session.new_page()
    """

    def __init__(self, config: BrowserConfig, timeouts: TimeoutConfig) -> None:
        self.config = config
        self.timeouts = timeouts
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    async def start(self) -> None:
        """Launch the browser and create the browsing context."""
        self._playwright = await async_playwright().start()
        logger.info("Launching browser...")
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=list(self.config.launch_args),
        )
        self._context = await self._browser.new_context(
            viewport=dict(self.config.viewport),
            user_agent=self.config.user_agent,
            locale=self.config.locale,
            timezone_id=self.config.timezone_id,
            extra_http_headers=dict(self.config.extra_headers),
        )
        await self._context.add_init_script(HIDE_WEBDRIVER_SCRIPT)

    async def new_page(self) -> Page:
        """Open a fresh page in the session's context."""
        if self._context is None:
            raise RuntimeError("BrowserSession not started")
        return await self._context.new_page()

    async def close(self) -> None:
        """Close context, browser and driver, each with its own time bound."""
        if self._context is not None:
            await close_quietly(self._context.close(), self.timeouts.dispose, "browser context")
            self._context = None
        if self._browser is not None:
            await close_quietly(self._browser.close(), self.timeouts.browser_close, "browser")
            self._browser = None
        if self._playwright is not None:
            await close_quietly(self._playwright.stop(), self.timeouts.browser_close, "playwright")
            self._playwright = None

    async def __aenter__(self) -> BrowserSession:
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
