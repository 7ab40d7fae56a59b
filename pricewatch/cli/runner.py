# pricewatch/cli/runner.py

"""Headless command runners: refresh, schedule, quota, add, history."""

import logging
from pathlib import Path

from rich.console import Console
from rich.table import Table

from pricewatch.extractors.base_extractor import ExtractionError
from pricewatch.extractors.html_extractor import HtmlPriceExtractor
from pricewatch.models.run_summary import RunSummary
from pricewatch.services.currency_normalizer import UnknownCurrencyError
from pricewatch.services.item_admission import (
    ItemAdmission,
    ProductAccessError,
    ProductNotFoundError,
    QuotaExceededError,
)
from pricewatch.services.quota_reconciler import QuotaReconciler
from pricewatch.services.refresh_orchestrator import PriceRefreshOrchestrator
from pricewatch.services.scheduler import build_scheduler
from pricewatch.storage.tracked_item_db import (
    DuplicateItemError,
    OwnerNotFoundError,
    PersistenceError,
    RepositoryUnavailableError,
    TrackedItemDB,
)

logger = logging.getLogger("pricewatch.cli")

# Status messages go to stderr, tables to stdout
_err = Console(stderr=True)


def _print_summary(summary: RunSummary) -> None:
    """Render a run summary as a Rich table."""
    table = Table(
        title="Price Refresh",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Items", justify="right")
    table.add_column("Unique URLs", justify="right")
    table.add_column("Updated", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(
        str(summary.total_items),
        str(summary.unique_url_count),
        str(summary.updated_count),
        str(summary.skipped_count),
        str(summary.failed_count),
    )
    Console().print(table)
    for error_msg in summary.errors:
        _err.print(f"[red]Error: {error_msg}[/red]")


async def run_refresh(db_path: Path | None = None) -> int:
    """Run one refresh pass now (0=ok, 1=items failed, 2=fatal)."""
    db = TrackedItemDB(db_path)
    orchestrator = PriceRefreshOrchestrator(db, HtmlPriceExtractor())
    try:
        _err.print("[bold]Refreshing tracked prices...[/bold]")
        summary = await orchestrator.run()
    except RepositoryUnavailableError as exc:
        _err.print(f"[red]Price update failed: {exc}[/red]")
        return 2
    finally:
        db.close()

    if summary.rejected:
        _err.print(f"[yellow]{summary.describe()}[/yellow]")
        return 0
    _print_summary(summary)
    return 1 if summary.failed_count else 0


def run_schedule(db_path: Path | None = None) -> int:
    """Block and run the refresh pass on the daily schedule."""
    db = TrackedItemDB(db_path)
    orchestrator = PriceRefreshOrchestrator(db, HtmlPriceExtractor())
    scheduler = build_scheduler(orchestrator)
    _err.print(
        "[bold]Price update scheduler started[/bold] "
        "[dim](Ctrl+C to stop)[/dim]"
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted, shutting down")
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=True)
        db.close()
    return 0


def show_quota(owner_id: str, db_path: Path | None = None) -> int:
    """Print an owner's reconciled quota."""
    db = TrackedItemDB(db_path)
    try:
        quota = QuotaReconciler(db).get_quota(owner_id)
    except OwnerNotFoundError:
        _err.print(f"[red]Unknown owner: {owner_id}[/red]")
        return 1
    finally:
        db.close()

    table = Table(title=f"URL quota: {owner_id}", title_style="bold cyan")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right", style="green")
    table.add_column("Exceeded", justify="center")
    table.add_row(
        str(quota.limit),
        str(quota.used),
        str(quota.remaining),
        "[red]yes[/red]" if quota.exceeded else "no",
    )
    Console().print(table)
    return 0


def add_item(
    owner_id: str,
    url: str,
    name: str = "",
    product_id: int | None = None,
    db_path: Path | None = None,
) -> int:
    """Start tracking a URL for an owner (creating the owner if new)."""
    db = TrackedItemDB(db_path)
    try:
        db.ensure_owner(owner_id)
        admission = ItemAdmission(db, HtmlPriceExtractor())
        item = admission.add_item(
            owner_id, url, name=name, canonical_product_id=product_id,
        )
    except (
        QuotaExceededError,
        ProductNotFoundError,
        ProductAccessError,
    ) as exc:
        _err.print(f"[red]{exc}[/red]")
        return 1
    except (
        ExtractionError,
        UnknownCurrencyError,
        DuplicateItemError,
        PersistenceError,
        ValueError,
    ) as exc:
        _err.print(f"[red]Could not add {url}: {exc}[/red]")
        return 1
    finally:
        db.close()

    _err.print(
        f"[green]✓ Tracking #{item.id} {item.label}: "
        f"{item.currency_code} {item.last_known_price_native} "
        f"(base {item.last_known_price_base})[/green]"
    )
    return 0


def show_history(item_id: int, db_path: Path | None = None) -> int:
    """Print every recorded price of one tracked item."""
    db = TrackedItemDB(db_path)
    try:
        item = db.get_item(item_id)
        history = db.get_price_history(item_id) if item else []
    finally:
        db.close()

    if item is None:
        _err.print(f"[red]No tracked item #{item_id}[/red]")
        return 1

    table = Table(
        title=f"Price history: {item.label}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Recorded", style="dim")
    table.add_column("Price", justify="right")
    table.add_column("Base", justify="right", style="green")
    for entry in history:
        table.add_row(
            entry.recorded_at.strftime("%Y-%m-%d %H:%M"),
            f"{entry.currency_code} {entry.price_native:,}",
            f"{entry.price_base:,}",
        )
    Console().print(table)
    return 0


def show_changes(owner_id: str, db_path: Path | None = None) -> int:
    """Print the latest price movement of each of an owner's items."""
    db = TrackedItemDB(db_path)
    try:
        changes = db.get_latest_changes(owner_id)
    finally:
        db.close()

    if not changes:
        _err.print("[yellow]No price changes recorded.[/yellow]")
        return 0

    table = Table(
        title=f"Latest price changes: {owner_id}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Item")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Change", justify="right")
    for change in changes:
        percent = change["difference_percent"]
        style = "green" if str(percent).startswith("-") else "red"
        table.add_row(
            str(change["name"] or change["url"]),
            str(change["old_price"]),
            str(change["new_price"]),
            f"[{style}]{percent}%[/{style}]",
        )
    Console().print(table)
    return 0
