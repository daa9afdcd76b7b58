"""
Sync Jobs Module
================

Runs the full pipeline for each configured store:

1. Connect to the store and read its enabled queries
2. Read the persisted snapshot
3. Crawl every query in one browser session
4. Deduplicate and reconcile the batch against the snapshot
5. Write the plan back

Each store runs in its own failure scope. The run as a whole fails only
when every store failed.
"""

from __future__ import annotations

import logging
import time
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable

from rent_sync.core.exceptions import ConfigurationError
from rent_sync.core.schema import ListingRecord, QueryConfig, format_timestamp
from rent_sync.ingestion.adapters import require_adapter
from rent_sync.ingestion.browser import BrowserSession
from rent_sync.ingestion.crawler import QueryCrawlResult, SourceCrawler
from rent_sync.ingestion.fetcher import PageFactory
from rent_sync.ingestion.reconcile import deduplicate, reconcile
from rent_sync.ingestion.registry import PipelineConfig, StoreConfig
from rent_sync.ingestion.retry import with_retry
from rent_sync.store.backend import StoreBackend
from rent_sync.store.writer import StoreWriter, store_retry_policy

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[], AbstractAsyncContextManager[PageFactory]]


class JobStatus(str, Enum):
    """Status of one store's sync."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StoreResult:
    """Result of syncing one store."""

    store_name: str
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    queries_crawled: int = 0
    queries_complete: int = 0
    records_crawled: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    retired: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "store_name": self.store_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "queries_crawled": self.queries_crawled,
            "queries_complete": self.queries_complete,
            "records_crawled": self.records_crawled,
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "retired": self.retired,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunSummary:
    """Per-store results of one run."""

    results: list[StoreResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[StoreResult]:
        return [r for r in self.results if r.status == JobStatus.COMPLETED]

    @property
    def failed(self) -> list[StoreResult]:
        return [r for r in self.results if r.status == JobStatus.FAILED]

    @property
    def all_failed(self) -> bool:
        """True when no store succeeded, including when none was configured."""
        return not self.succeeded

    @property
    def exit_code(self) -> int:
        return 1 if self.all_failed else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "stores": [r.to_dict() for r in self.results],
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
        }


def retiring_query_ids(results: list[QueryCrawlResult], include_partial: bool = False) -> set[str]:
    """
    Ids of the queries allowed to retire rows.

    A blocked, timed-out or gap-ridden crawl does not prove a listing is
    gone, so only complete crawls count unless ``include_partial`` is set.
    """
    ids = set()
    for result in results:
        if result.complete or include_partial:
            ids.add(result.query.query_id)
        else:
            logger.warning(
                f"Query {result.query.label or result.query.query_url} ended early "
                f"({result.stop_reason.value}); its rows will not be retired this run"
            )
    return ids


class JobRunner:
    """
    Syncs stores sequentially with the given backend.

    Args:
        config: Pipeline configuration
        backend: Store backend to connect through
        browser_factory: Zero-argument callable returning an async context
            manager that yields a page factory; defaults to a BrowserSession
    """

    def __init__(
        self,
        config: PipelineConfig,
        backend: StoreBackend,
        browser_factory: BrowserFactory | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.browser_factory = browser_factory or (
            lambda: BrowserSession(config.browser, config.timeouts)
        )

    async def crawl(self, queries: list[QueryConfig]) -> list[QueryCrawlResult]:
        """Crawl queries in order within one browser session."""
        adapter = require_adapter(self.config.crawl.adapter)
        async with self.browser_factory() as pages:
            crawler = SourceCrawler(pages, adapter, self.config)
            return await crawler.crawl_queries(queries)

    async def run_store(self, store: StoreConfig) -> StoreResult:
        """
        Run the pipeline for one store.

        Never raises; failures are recorded on the returned result.

        Args:
            store: Store to sync

        Returns:
            StoreResult
        """
        result = StoreResult(
            store_name=store.name,
            status=JobStatus.RUNNING,
            started_at=datetime.now(UTC),
        )
        start_time = time.monotonic()
        logger.info(f"Syncing store '{store.name}'")

        try:
            handle = await with_retry(
                lambda: self.backend.connect(store),
                f"connect {store.name}",
                store_retry_policy(self.config),
            )
            writer = StoreWriter(handle, self.config)

            queries = [q for q in await writer.load_queries() if q.enabled]
            if not queries:
                raise ConfigurationError(
                    f"No active URLs configured in the {self.config.sheets.config_sheet} sheet"
                )
            logger.info(f"Loaded {len(queries)} active quer{'y' if len(queries) == 1 else 'ies'}")

            snapshot = await writer.load_snapshot()

            crawl_results = await self.crawl(queries)
            records: list[ListingRecord] = [r for cr in crawl_results for r in cr.records]
            batch = deduplicate(records)
            result.queries_crawled = len(crawl_results)
            result.queries_complete = sum(1 for cr in crawl_results if cr.complete)
            result.records_crawled = len(batch)
            logger.info(f"Crawled {len(records)} records, {len(batch)} unique")

            plan = reconcile(
                batch,
                snapshot,
                retiring_query_ids(
                    crawl_results,
                    include_partial=self.config.reconcile.retire_on_partial_crawl,
                ),
                now=format_timestamp(),
            )
            await writer.apply(plan)

            counts = plan.counts()
            result.added = counts["added"]
            result.updated = counts["updated"]
            result.unchanged = counts["unchanged"]
            result.retired = counts["retired"]
            result.status = JobStatus.COMPLETED
            logger.info(
                f"Store '{store.name}': added {result.added}, updated {result.updated}, "
                f"unchanged {result.unchanged}, retired {result.retired}"
            )

        except Exception as e:
            logger.exception(f"Store '{store.name}' failed: {e}")
            result.status = JobStatus.FAILED
            result.errors.append(str(e))

        finally:
            result.completed_at = datetime.now(UTC)
            result.duration_seconds = time.monotonic() - start_time

        return result

    async def run_all(self, stores: list[StoreConfig]) -> RunSummary:
        """
        Sync stores in discovery order.

        Args:
            stores: Stores to sync

        Returns:
            RunSummary; ``all_failed`` is True when nothing succeeded
        """
        summary = RunSummary()
        if not stores:
            logger.error("No stores configured")
            return summary

        for index, store in enumerate(stores, start=1):
            logger.info(f"[{index}/{len(stores)}] {store.name}")
            summary.results.append(await self.run_store(store))

        logger.info(
            f"Run finished: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed"
        )
        return summary
