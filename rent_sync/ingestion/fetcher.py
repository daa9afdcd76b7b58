"""
Page Fetch Module
=================

One listing page's lifecycle as an explicit state machine:

    NAVIGATING -> DETECTING_BLOCK -> WAITING_FOR_CONTENT -> EXTRACTING -> DONE
         |               |                                      |
         +---------------+----------------> BLOCKED <-----------+
    (any state) -> ERROR on a Playwright fault

Timeouts are layered: navigation, selector and network-idle waits inside
the machine, and an outer wall-clock bound around each attempt. The
PageFetcher runs attempts through the shared retry combinator: transient
faults are retried with linear backoff plus jitter, blocks and timeouts
are not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rent_sync.core.exceptions import (
    BlockedError,
    OperationTimeoutError,
    PageTimeoutError,
    TransientFetchError,
)
from rent_sync.core.schema import ListingRecord
from rent_sync.ingestion.adapters.base import BaseAdapter
from rent_sync.ingestion.browser import close_quietly
from rent_sync.ingestion.registry import PipelineConfig
from rent_sync.ingestion.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

VISIBLE_TEXT_SCRIPT = "(limit) => ((document.body && document.body.innerText) || '').slice(0, limit)"

BLOCK_STATUS_NOTES = {
    403: "anti-bot",
    429: "rate limited",
}


class FetchState(str, Enum):
    """States of one page fetch attempt."""

    NAVIGATING = "navigating"
    DETECTING_BLOCK = "detecting_block"
    WAITING_FOR_CONTENT = "waiting_for_content"
    EXTRACTING = "extracting"
    DONE = "done"
    BLOCKED = "blocked"
    ERROR = "error"


TERMINAL_STATES = frozenset({FetchState.DONE, FetchState.BLOCKED, FetchState.ERROR})


class OutcomeKind(str, Enum):
    """Classified result of fetching one page."""

    SUCCESS = "success"
    EMPTY_PAGE = "empty_page"
    BLOCKED = "blocked"
    TRANSIENT_ERROR = "transient_error"
    FATAL_TIMEOUT = "fatal_timeout"


@dataclass
class CrawlOutcome:
    """Transient per-page result; drives pagination, never persisted."""

    kind: OutcomeKind
    url: str
    records: list[ListingRecord] = field(default_factory=list)
    reason: str = ""
    attempts: int = 1

    @property
    def ends_pagination(self) -> bool:
        """Whether no further pages of this query should be requested."""
        return self.kind in (
            OutcomeKind.EMPTY_PAGE,
            OutcomeKind.BLOCKED,
            OutcomeKind.FATAL_TIMEOUT,
        )


class PageFactory(Protocol):
    """Anything that can open a fresh page (BrowserSession in production)."""

    async def new_page(self) -> Page: ...


def _ms(seconds: float) -> float:
    return seconds * 1000


class PageFetchMachine:
    """
    Drives a single attempt at one page through the fetch states.

    ``run`` returns a SUCCESS or EMPTY_PAGE outcome, or raises BlockedError,
    PageTimeoutError or TransientFetchError for the other terminal paths.
    """

    def __init__(
        self,
        page: Page,
        url: str,
        adapter: BaseAdapter,
        config: PipelineConfig,
        source_query_id: str,
    ) -> None:
        self.page = page
        self.url = url
        self.adapter = adapter
        self.timeouts = config.timeouts
        self.signatures = config.block_signatures
        self.source_query_id = source_query_id

        self.state = FetchState.NAVIGATING
        self.history: list[FetchState] = [self.state]
        self.records: list[ListingRecord] = []
        self.block_reason = ""
        self.payload_supported = False

    def _transition(self, state: FetchState) -> None:
        logger.debug(f"{self.url}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _block(self, reason: str) -> FetchState:
        self.block_reason = reason
        return FetchState.BLOCKED

    async def run(self) -> CrawlOutcome:
        handlers = {
            FetchState.NAVIGATING: self._navigate,
            FetchState.DETECTING_BLOCK: self._detect_block,
            FetchState.WAITING_FOR_CONTENT: self._wait_for_content,
            FetchState.EXTRACTING: self._extract,
        }
        try:
            while self.state not in TERMINAL_STATES:
                self._transition(await handlers[self.state]())
        except PlaywrightTimeoutError as e:
            self._transition(FetchState.ERROR)
            raise PageTimeoutError(f"Timeout loading {self.url}: {e}") from e
        except PlaywrightError as e:
            self._transition(FetchState.ERROR)
            raise TransientFetchError(f"Error loading {self.url}: {e}") from e

        if self.state == FetchState.BLOCKED:
            raise BlockedError(self.block_reason)

        kind = OutcomeKind.SUCCESS if self.records else OutcomeKind.EMPTY_PAGE
        return CrawlOutcome(kind=kind, url=self.url, records=list(self.records))

    async def _navigate(self) -> FetchState:
        response = await self.page.goto(
            self.url,
            wait_until="domcontentloaded",
            timeout=_ms(self.timeouts.navigation),
        )
        if response is None:
            return self._block("No response received")

        status = response.status
        if status in self.signatures.statuses:
            try:
                phrase = HTTPStatus(status).phrase
            except ValueError:
                phrase = "Blocked"
            note = BLOCK_STATUS_NOTES.get(status)
            return self._block(f"HTTP {status} {phrase}" + (f" ({note})" if note else ""))
        if status >= 500:
            raise TransientFetchError(f"HTTP {status} from {self.url}")

        final_url = response.url
        if final_url != self.url and not self.adapter.is_expected_origin(final_url):
            return self._block(f"Redirected to {final_url}")

        return FetchState.DETECTING_BLOCK

    async def _detect_block(self) -> FetchState:
        reason = await self._challenge_reason()
        if reason:
            return self._block(reason)
        return FetchState.WAITING_FOR_CONTENT

    async def _wait_for_content(self) -> FetchState:
        # Data is embedded at load time, so it is usually readable right away
        if await self._read_records():
            return FetchState.EXTRACTING

        if self.adapter.ready_selector:
            try:
                await self.page.wait_for_selector(
                    self.adapter.ready_selector,
                    timeout=_ms(self.timeouts.selector),
                )
            except PlaywrightTimeoutError:
                logger.debug(f"{self.url}: listing selector did not appear")

        try:
            await self.page.wait_for_load_state(
                "networkidle",
                timeout=_ms(self.timeouts.network_idle),
            )
        except PlaywrightTimeoutError:
            logger.info(f"{self.url}: network idle timeout, proceeding with available data")

        return FetchState.EXTRACTING

    async def _extract(self) -> FetchState:
        if self.records or await self._read_records():
            return FetchState.DONE

        reason = await self._challenge_reason()
        if reason:
            return self._block(reason)

        if self.payload_supported:
            logger.info(f"{self.url}: no listings on page")
        else:
            logger.warning(
                f"{self.url}: embedded listing data not found (page may have changed structure)"
            )
        return FetchState.DONE

    async def _read_records(self) -> bool:
        payload = await self.page.evaluate(self.adapter.payload_script)
        self.payload_supported = self.adapter.decode(payload) is not None
        self.records = list(self.adapter.extract(payload, self.source_query_id))
        return bool(self.records)

    async def _challenge_reason(self) -> str:
        """Match page title and visible text against known challenge signatures."""
        try:
            title = await self.page.title()
        except PlaywrightError:
            title = ""
        if self.signatures.match_title(title or ""):
            return f'Challenge page: "{title}"'

        try:
            text = await self.page.evaluate(VISIBLE_TEXT_SCRIPT, self.signatures.body_prefix_chars)
        except PlaywrightError:
            text = ""
        pattern = self.signatures.match_body(text or "")
        if pattern:
            return f"Anti-bot content detected on page ({pattern})"
        return ""


class PageFetcher:
    """
    Fetches single pages with layered timeouts and the page retry policy.

    Never raises for page-level failures; every path ends in a CrawlOutcome.
    """

    def __init__(self, pages: PageFactory, adapter: BaseAdapter, config: PipelineConfig) -> None:
        self.pages = pages
        self.adapter = adapter
        self.config = config
        self.policy = RetryPolicy(
            attempts=config.retry.page_attempts,
            timeout=config.timeouts.page,
            backoff=config.retry.page_backoff_seconds,
            jitter=config.retry.page_jitter_seconds,
            retry_on=(TransientFetchError,),
        )

    async def fetch(self, url: str, source_query_id: str) -> CrawlOutcome:
        """
        Fetch and extract one page.

        Args:
            url: Page URL
            source_query_id: Query id stamped on extracted records

        Returns:
            CrawlOutcome classifying the page
        """
        attempts = 0

        async def attempt() -> CrawlOutcome:
            nonlocal attempts
            attempts += 1
            return await self._attempt(url, source_query_id)

        try:
            outcome = await with_retry(attempt, f"Page {url}", self.policy)
        except BlockedError as e:
            logger.warning(f"Blocked: {e.reason}")
            outcome = CrawlOutcome(kind=OutcomeKind.BLOCKED, url=url, reason=e.reason)
        except (PageTimeoutError, OperationTimeoutError) as e:
            logger.warning(f"{e}; not retrying")
            outcome = CrawlOutcome(kind=OutcomeKind.FATAL_TIMEOUT, url=url, reason=str(e))
        except TransientFetchError as e:
            outcome = CrawlOutcome(kind=OutcomeKind.TRANSIENT_ERROR, url=url, reason=str(e))

        outcome.attempts = attempts
        return outcome

    async def _attempt(self, url: str, source_query_id: str) -> CrawlOutcome:
        try:
            page = await self.pages.new_page()
        except PlaywrightError as e:
            raise TransientFetchError(f"Could not open page: {e}") from e

        try:
            machine = PageFetchMachine(page, url, self.adapter, self.config, source_query_id)
            return await machine.run()
        finally:
            await close_quietly(page.close(), self.config.timeouts.dispose, "page")
