"""
Source Crawl Module
===================

Drives the page fetcher across the pages of one configured query, with
page and item budgets and a jittered pause between pages.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from rent_sync.core.schema import ListingRecord, QueryConfig
from rent_sync.ingestion.adapters.base import BaseAdapter
from rent_sync.ingestion.fetcher import CrawlOutcome, OutcomeKind, PageFactory, PageFetcher
from rent_sync.ingestion.registry import PipelineConfig
from rent_sync.ingestion.retry import jittered_delay

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why pagination of a query ended."""

    END_OF_RESULTS = "end_of_results"
    PAGE_BUDGET = "page_budget"
    ITEM_BUDGET = "item_budget"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"


# Stop reasons after which the query's result set is known in full
COMPLETE_STOP_REASONS = frozenset(
    {StopReason.END_OF_RESULTS, StopReason.PAGE_BUDGET, StopReason.ITEM_BUDGET}
)


@dataclass
class QueryCrawlResult:
    """Records collected for one query and how the crawl ended."""

    query: QueryConfig
    records: list[ListingRecord] = field(default_factory=list)
    pages_fetched: int = 0
    pages_skipped: int = 0
    stop_reason: StopReason = StopReason.END_OF_RESULTS
    detail: str = ""

    @property
    def complete(self) -> bool:
        """True when every page up to the stop point was read successfully."""
        return self.stop_reason in COMPLETE_STOP_REASONS and self.pages_skipped == 0


class SourceCrawler:
    """
    Sequential, polite crawler for the queries of one store.

    Pages of a query are fetched strictly in increasing order; the next
    page number advances only once the current page is terminal.
    """

    def __init__(
        self,
        pages: PageFactory,
        adapter: BaseAdapter,
        config: PipelineConfig,
        fetcher: PageFetcher | None = None,
    ) -> None:
        self.adapter = adapter
        self.config = config
        self.fetcher = fetcher or PageFetcher(pages, adapter, config)

    async def _pause(self) -> None:
        crawl = self.config.crawl
        delay = jittered_delay(crawl.request_delay_seconds, crawl.request_jitter_seconds)
        if delay > 0:
            logger.debug(f"Waiting {delay:.1f}s before next request")
            await asyncio.sleep(delay)

    async def crawl_query(self, query: QueryConfig) -> QueryCrawlResult:
        """
        Crawl all pages of one query up to the configured budgets.

        Page-level failures end pagination but keep the records already
        collected.

        Args:
            query: The configured query

        Returns:
            QueryCrawlResult with records in page order
        """
        max_pages = max(1, self.config.crawl.max_pages_per_query)
        max_items = self.config.crawl.max_items_per_query
        result = QueryCrawlResult(query=query)

        logger.info(f"Crawling query: {query.label or query.query_url}")

        page_number = 1
        while True:
            url = self.adapter.page_url(query.query_url, page_number)
            logger.info(f"Fetching page {page_number}: {url}")
            outcome = await self.fetcher.fetch(url, query.query_id)

            if not self._absorb(result, outcome, page_number, max_items):
                break

            if max_items and len(result.records) >= max_items:
                result.stop_reason = StopReason.ITEM_BUDGET
                break
            if page_number >= max_pages:
                result.stop_reason = StopReason.PAGE_BUDGET
                break

            page_number += 1
            if outcome.kind == OutcomeKind.SUCCESS:
                await self._pause()

        logger.info(
            f"Query finished ({result.stop_reason.value}): {len(result.records)} records "
            f"from {result.pages_fetched} page(s)"
            + (f", {result.pages_skipped} skipped" if result.pages_skipped else "")
        )
        return result

    def _absorb(
        self,
        result: QueryCrawlResult,
        outcome: CrawlOutcome,
        page_number: int,
        max_items: int,
    ) -> bool:
        """Fold one page outcome into ``result``. Returns False to stop paginating."""
        if outcome.kind == OutcomeKind.SUCCESS:
            records = outcome.records
            if max_items:
                records = records[: max_items - len(result.records)]
            result.records.extend(records)
            result.pages_fetched += 1
            logger.info(f"Page {page_number}: {len(records)} records")
            return True

        if outcome.kind == OutcomeKind.EMPTY_PAGE:
            result.stop_reason = StopReason.END_OF_RESULTS
            logger.info(f"Page {page_number}: no listings, end of results")
            return False

        if outcome.kind == OutcomeKind.BLOCKED:
            result.stop_reason = StopReason.BLOCKED
            result.detail = outcome.reason
            logger.warning(f"Page {page_number} blocked ({outcome.reason}); stopping query")
            return False

        if outcome.kind == OutcomeKind.FATAL_TIMEOUT:
            result.stop_reason = StopReason.TIMEOUT
            result.detail = outcome.reason
            logger.warning(f"Page {page_number} timed out; stopping query")
            return False

        # Retries exhausted: give the page up and move on
        result.pages_skipped += 1
        result.detail = outcome.reason
        logger.error(
            f"Page {page_number} failed after {outcome.attempts} attempt(s): {outcome.reason}"
        )
        return True

    async def crawl_queries(self, queries: list[QueryConfig]) -> list[QueryCrawlResult]:
        """Crawl queries in configured order, pausing between them."""
        results: list[QueryCrawlResult] = []
        for index, query in enumerate(queries):
            if index > 0:
                await self._pause()
            results.append(await self.crawl_query(query))
        return results
