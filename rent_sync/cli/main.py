"""rent-sync CLI using Typer."""

import os
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from rent_sync.cli.sync import crawl_query, list_stores, run_sync

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

__version__ = "0.1.0"

app = typer.Typer(
    name="rent-sync",
    help="rent-sync - Crawl 591 rental listings into Google Sheets",
    add_completion=False,
)

app.command("run")(run_sync)
app.command("crawl")(crawl_query)
app.command("stores")(list_stores)


@app.command()
def version() -> None:
    """Show the rent-sync version."""
    typer.echo(f"rent-sync v{__version__}")


@app.command()
def check_config(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to pipeline.yaml"
    ),
) -> None:
    """Check the current configuration status."""
    from rent_sync.core.exceptions import ConfigurationError
    from rent_sync.ingestion.registry import default_config_path, discover_stores, load_config
    from rent_sync.store.sheets import SERVICE_ACCOUNT_FILE_ENV, has_credentials

    typer.echo("rent-sync Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        typer.echo(f"  Config: ERROR - {e}")
        raise typer.Exit(1)

    source = config.source_path or f"{config_path or default_config_path()} (not found, using defaults)"
    typer.echo(f"  Config: {source}")

    # Check credentials
    if os.environ.get(SERVICE_ACCOUNT_FILE_ENV):
        typer.echo(f"  Credentials: service account file {os.environ[SERVICE_ACCOUNT_FILE_ENV]}")
    elif has_credentials():
        typer.echo("  Credentials: service account email + private key")
    else:
        typer.echo("  Credentials: Not configured")
        typer.echo("  Tip: Set GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_PRIVATE_KEY in .env")

    stores = discover_stores(config)
    typer.echo(f"  Stores: {', '.join(s.name for s in stores) if stores else 'None'}")

    timeouts = config.timeouts
    typer.echo(
        f"  Timeouts: navigation {timeouts.navigation:g}s, page {timeouts.page:g}s, "
        f"store calls {timeouts.store_operation:g}s"
    )
    typer.echo(
        f"  Budgets: {config.crawl.max_pages_per_query} pages, "
        f"{config.crawl.max_items_per_query or 'unlimited'} items per query"
    )


if __name__ == "__main__":
    app()
