"""
rent-sync Ingestion Framework
=============================

The crawl-and-reconcile pipeline for one or more stores.

Pipeline Stages:
1. Fetch - A per-page state machine navigates, detects blocks, waits for content
2. Extract - Adapters decode the page's embedded data into ListingRecords
3. Crawl - Pages of each query are fetched in order within page/item budgets
4. Reconcile - The batch is diffed against the store snapshot
5. Write - Inserts, updates and retirements are applied in two batches
"""

from rent_sync.ingestion.registry import (
    PipelineConfig,
    StoreConfig,
    discover_stores,
    load_config,
)
from rent_sync.ingestion.retry import RetryPolicy, with_retry
from rent_sync.ingestion.fetcher import (
    CrawlOutcome,
    FetchState,
    OutcomeKind,
    PageFetcher,
    PageFetchMachine,
)
from rent_sync.ingestion.crawler import (
    QueryCrawlResult,
    SourceCrawler,
    StopReason,
)
from rent_sync.ingestion.reconcile import (
    ReconcilePlan,
    RowUpdate,
    apply_plan,
    deduplicate,
    reconcile,
)

__all__ = [
    # Registry
    "PipelineConfig",
    "StoreConfig",
    "discover_stores",
    "load_config",
    # Retry
    "RetryPolicy",
    "with_retry",
    # Fetcher
    "CrawlOutcome",
    "FetchState",
    "OutcomeKind",
    "PageFetcher",
    "PageFetchMachine",
    # Crawler
    "QueryCrawlResult",
    "SourceCrawler",
    "StopReason",
    # Reconcile
    "ReconcilePlan",
    "RowUpdate",
    "apply_plan",
    "deduplicate",
    "reconcile",
]
