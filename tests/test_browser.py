"""Tests for browser session disposal helpers."""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from rent_sync.ingestion.browser import BrowserSession, close_quietly
from rent_sync.ingestion.registry import BrowserConfig, TimeoutConfig


class TestCloseQuietly:
    """Tests for close_quietly()."""

    @pytest.mark.asyncio
    async def test_completes(self) -> None:
        """Test that a prompt close simply returns."""
        closed = []

        async def close() -> None:
            closed.append(True)

        await close_quietly(close(), 1.0, "page")
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_timeout_abandoned(self) -> None:
        """Test that a hanging close is abandoned after its timeout."""

        async def hang() -> None:
            await asyncio.sleep(10)

        await asyncio.wait_for(close_quietly(hang(), 0.01, "page"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_playwright_error_dropped(self) -> None:
        """Test that a failing close does not raise."""

        async def fail() -> None:
            raise PlaywrightError("Target page, context or browser has been closed")

        await close_quietly(fail(), 1.0, "page")


class TestBrowserSession:
    """Tests for BrowserSession state handling."""

    @pytest.mark.asyncio
    async def test_new_page_before_start(self) -> None:
        """Test that pages cannot be opened before the session starts."""
        session = BrowserSession(BrowserConfig(), TimeoutConfig())
        with pytest.raises(RuntimeError, match="not started"):
            await session.new_page()

    @pytest.mark.asyncio
    async def test_close_without_start(self) -> None:
        """Test that closing an unstarted session is a no-op."""
        await BrowserSession(BrowserConfig(), TimeoutConfig()).close()
