"""
Sync CLI Commands
=================

CLI commands for running the crawl-and-reconcile pipeline.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from rent_sync.core.exceptions import ConfigurationError
from rent_sync.core.schema import ListingRecord, QueryConfig
from rent_sync.ingestion.adapters import require_adapter
from rent_sync.ingestion.browser import BrowserSession
from rent_sync.ingestion.crawler import QueryCrawlResult, SourceCrawler
from rent_sync.ingestion.jobs import JobRunner, RunSummary
from rent_sync.ingestion.registry import PipelineConfig, discover_stores, load_config
from rent_sync.services.export_service import ExportService, display_price
from rent_sync.store.sheets import GoogleSheetsBackend

console = Console()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def _load_config_or_exit(config_path: Optional[Path]) -> PipelineConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def run_sync(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to pipeline.yaml"
    ),
    store_names: Optional[list[str]] = typer.Option(
        None, "--store", "-s", help="Only sync the named store (repeatable)"
    ),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Crawl every active query and sync the results into each store.

    Examples:
        rent-sync run
        rent-sync run --store taipei --store newtaipei
    """
    configure_logging(verbose)
    config = _load_config_or_exit(config_path)
    if headful:
        config.browser.headless = False

    stores = discover_stores(config)
    if store_names:
        wanted = {name.lower() for name in store_names}
        unknown = wanted - {s.name.lower() for s in stores}
        if unknown:
            rprint(f"[red]Error:[/red] Unknown store(s): {', '.join(sorted(unknown))}")
            raise typer.Exit(1)
        stores = [s for s in stores if s.name.lower() in wanted]

    if not stores:
        rprint("[red]Error:[/red] No stores configured")
        rprint("\nSet GOOGLE_SHEETS_ID (or GOOGLE_SHEETS_ID_<NAME>) in .env,")
        rprint("or list stores under 'stores:' in config/pipeline.yaml")
        raise typer.Exit(1)

    rprint(f"\n[bold]Syncing {len(stores)} store(s)[/bold]")
    runner = JobRunner(config, GoogleSheetsBackend(config.sheets))
    summary = asyncio.run(runner.run_all(stores))

    _display_summary(summary)
    raise typer.Exit(summary.exit_code)


def crawl_query(
    url: str = typer.Argument(..., help="Search result URL to crawl"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", "-p", help="Page budget"),
    max_items: Optional[int] = typer.Option(
        None, "--max-items", "-m", help="Item budget (0 = unlimited)"
    ),
    output_dir: Path = typer.Option(
        Path("."), "--output-dir", "-o", help="Directory for listings.json and listings.csv"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to pipeline.yaml"
    ),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Crawl one query without touching any store.

    Examples:
        rent-sync crawl "https://rent.591.com.tw/list?region=1" --max-pages 2
    """
    configure_logging(verbose)
    config = _load_config_or_exit(config_path)
    if max_pages is not None:
        config.crawl.max_pages_per_query = max_pages
    if max_items is not None:
        config.crawl.max_items_per_query = max_items
    if headful:
        config.browser.headless = False

    try:
        adapter = require_adapter(config.crawl.adapter)
    except ConfigurationError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    async def _crawl() -> QueryCrawlResult:
        async with BrowserSession(config.browser, config.timeouts) as session:
            crawler = SourceCrawler(session, adapter, config)
            return await crawler.crawl_query(QueryConfig(query_url=url))

    result = asyncio.run(_crawl())
    rprint(
        f"\n[bold]Total:[/bold] {len(result.records)} listings from "
        f"{result.pages_fetched} page(s) ({result.stop_reason.value})"
    )
    if result.detail:
        rprint(f"  [yellow]{result.detail}[/yellow]")

    if not result.records:
        raise typer.Exit(0 if result.complete else 1)

    _display_sample(result.records)

    output_dir.mkdir(parents=True, exist_ok=True)
    service = ExportService(source=url)
    json_path = output_dir / "listings.json"
    csv_path = output_dir / "listings.csv"
    json_path.write_text(service.export_json(result.records), encoding="utf-8")
    csv_path.write_text(service.export_csv(result.records), encoding="utf-8")
    rprint(f"\n[green]Saved:[/green] {json_path}")
    rprint(f"[green]Saved:[/green] {csv_path}")


def list_stores(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to pipeline.yaml"
    ),
) -> None:
    """
    List the stores a run would sync, in order.

    Examples:
        rent-sync stores
    """
    config = _load_config_or_exit(config_path)
    stores = discover_stores(config)

    if not stores:
        rprint("[yellow]No stores configured[/yellow]")
        rprint("\nSet GOOGLE_SHEETS_ID in .env or add stores to config/pipeline.yaml")
        return

    table = Table(title="Stores")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Spreadsheet ID")

    for index, store in enumerate(stores, start=1):
        table.add_row(str(index), store.name, store.store_id)

    console.print(table)


def _display_sample(records: list[ListingRecord], limit: int = 5) -> None:
    """Print the first few crawled listings."""
    rprint("\n[bold]Sample listings:[/bold]\n")
    for index, record in enumerate(records[:limit], start=1):
        rprint(f"[{index}] {record.title}")
        rprint(f"    ID: {record.id}")
        rprint(f"    Price: {display_price(record)}")
        rprint(
            f"    Type: {record.property_kind} | Size: {record.size}坪 | Floor: {record.floor_info}"
        )
        rprint(f"    Location: {record.location}")
        rprint(f"    Agent: {record.agent_role.value} {record.agent_name}")
        if record.tags:
            rprint(f"    Tags: {', '.join(record.tags)}")
        rprint(f"    URL: {record.canonical_url}")


def _display_summary(summary: RunSummary) -> None:
    """Display per-store results in a table."""
    table = Table(title="Sync Results")
    table.add_column("Store", style="bold")
    table.add_column("Status")
    table.add_column("Queries", justify="right")
    table.add_column("Added", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Retired", justify="right")
    table.add_column("Duration", justify="right")

    for result in summary.results:
        status = result.status.value
        color = "green" if status == "completed" else "red"
        duration = f"{result.duration_seconds:.1f}s" if result.duration_seconds else "-"
        table.add_row(
            result.store_name,
            f"[{color}]{status}[/{color}]",
            f"{result.queries_complete}/{result.queries_crawled}",
            str(result.added),
            str(result.updated),
            str(result.unchanged),
            str(result.retired),
            duration,
        )

    console.print(table)

    for result in summary.failed:
        rprint(f"\n[bold red]{result.store_name} errors:[/bold red]")
        for error in result.errors[:10]:
            rprint(f"  • {error}")

    if summary.all_failed:
        rprint("\n[red]All stores failed[/red]")
    else:
        rprint(
            f"\n[green]{len(summary.succeeded)} store(s) synced[/green]"
            + (f", [red]{len(summary.failed)} failed[/red]" if summary.failed else "")
        )
