"""
Main entry point for SYNC APP
Handles scheduled synchronization, snapshot exchange and maintenance commands
"""

import logging
import logging.handlers
import time
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import schedule
import typer
from rich.console import Console
from rich.table import Table
from rich.logging import RichHandler

from shared.database import LocalStore
from sync_app.config.settings import settings, LOGS_DIR
from sync_app.src.analysis_loader import AnalysisLoader
from sync_app.src.bootstrap_importer import BootstrapAction, BootstrapImporter
from sync_app.src.data_synchronizer import DataSynchronizer
from sync_app.src.errors import AuthError, SnapshotError, SyncAppError
from sync_app.src.schema_migrator import SchemaMigrator
from sync_app.src.snapshot_codec import (
    export_snapshot,
    format_bytes,
    import_snapshot,
    read_snapshot_file,
    snapshot_stats,
    write_snapshot_file,
)


# Setup logging
def setup_logging():
    """Configure logging for SYNC APP"""
    LOGS_DIR.mkdir(exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format=settings.log_format,
        handlers=[
            logging.handlers.RotatingFileHandler(
                LOGS_DIR / settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count
            ),
            RichHandler(rich_tracebacks=True)
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"🚀 {settings.app_name} v{settings.version} starting up")
    return logger


# CLI application
app = typer.Typer(
    name="sync-app",
    help="Marathon Tracker Sync App - Local-first Intervals.icu replica",
    rich_markup_mode="rich"
)

console = Console()


def _store() -> LocalStore:
    return LocalStore(database_url=settings.database_url or None)


def _print_results(title: str, results: Dict[str, Dict[str, Any]]) -> None:
    table = Table(title=title)
    table.add_column("Step", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Records", style="yellow")
    table.add_column("Created", style="green")
    table.add_column("Updated", style="blue")
    table.add_column("Evicted", style="magenta")
    table.add_column("Errors", style="red")

    for step, data in results.items():
        status = "✅ Success" if data.get("success") and not data.get("failed") else "⚠️ Partial"
        table.add_row(
            step.replace("_", " ").title(),
            status,
            str(data.get("records", 0)),
            str(data.get("created", 0)),
            str(data.get("updated", 0)),
            str(data.get("evicted", 0)),
            str(len(data.get("errors", []))),
        )
    console.print(table)

    for step, data in results.items():
        if data.get("errors"):
            console.print(f"\n❌ [red]{step.replace('_', ' ').title()} Errors:[/red]")
            for error in data["errors"]:
                console.print(f"  • {error}")


@app.command()
def configure(
    api_key: str = typer.Option(..., "--api-key", prompt=True, hide_input=True, help="Intervals.icu API key"),
    athlete_id: str = typer.Option(..., "--athlete-id", prompt=True, help="Intervals.icu athlete id (e.g. i123456)"),
):
    """
    Store Intervals.icu credentials in the local config table
    """
    setup_logging()
    store = _store()
    store.set_config("intervals_api_key", api_key)
    store.set_config("intervals_athlete_id", athlete_id)

    synchronizer = DataSynchronizer(store=store)
    if synchronizer.client.test_connection():
        console.print(f"✅ [green]Credentials saved and verified for athlete[/green] {athlete_id}")
    else:
        console.print("⚠️ [yellow]Credentials saved but the connection test failed[/yellow]")


@app.command()
def sync(
    days_back: int = typer.Option(None, "--days", "-d", help="Days back to sync"),
    full: bool = typer.Option(False, "--full", "-f", help="Re-fetch and upsert every record in range"),
    oldest: Optional[datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="Range start YYYY-MM-DD (overrides --days)"),
    newest: Optional[datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="Range end YYYY-MM-DD (default today)"),
):
    """
    Synchronize activities, intervals, wellness and events from Intervals.icu
    """
    setup_logging()

    console.print("🔄 [bold blue]Starting Data Synchronization[/bold blue]")
    synchronizer = DataSynchronizer(store=_store())

    console.print("🔍 Testing connections...")
    connections = synchronizer.test_connection()

    connection_table = Table(title="Connection Status")
    connection_table.add_column("Service", style="cyan")
    connection_table.add_column("Status", style="green")
    for service, ok in connections.items():
        connection_table.add_row(service.title(), "✅ Connected" if ok else "❌ Failed")
    console.print(connection_table)

    if not connections.get("intervals"):
        console.print("❌ [red]Intervals.icu not reachable. Run `configure` first.[/red]")
        raise typer.Exit(1)

    end = newest.date() if newest else date.today()
    if oldest is None:
        if days_back is None:
            days_back = settings.sync_lookback_days
        start = end - timedelta(days=days_back)
    else:
        start = oldest.date()
    start_date, end_date = start.isoformat(), end.isoformat()

    console.print(f"📅 Syncing [bold]{start_date}[/bold] → [bold]{end_date}[/bold] ({'full' if full else 'incremental'})")
    try:
        results = synchronizer.sync_all(start_date, end_date, full=full)
    except SyncAppError as e:
        console.print(f"❌ [red]Sync aborted[/red]: {e}")
        raise typer.Exit(1)

    _print_results("Sync Results", results)


@app.command(name="sync-wellness")
def sync_wellness(
    days_back: int = typer.Option(None, "--days", "-d", help="Days back to sync"),
    force: bool = typer.Option(False, "--force", help="Refetch even if days are stored"),
):
    """
    Synchronize the daily wellness series
    """
    setup_logging()
    synchronizer = DataSynchronizer(store=_store())
    days_back = days_back or settings.sync_lookback_days
    end_date = date.today()
    start_date = end_date - timedelta(days=days_back)
    try:
        records = synchronizer.sync_wellness(start_date.isoformat(), end_date.isoformat(), force_refresh=force)
    except SyncAppError as e:
        console.print(f"❌ [red]Wellness sync failed[/red]: {e}")
        raise typer.Exit(1)

    table = Table(title="Wellness")
    table.add_column("Date", style="cyan")
    table.add_column("CTL", style="yellow")
    table.add_column("ATL", style="yellow")
    table.add_column("Form", style="green")
    for record in records[-10:]:
        ctl, atl = record.get("ctl"), record.get("atl")
        form = f"{ctl - atl:.1f}" if ctl is not None and atl is not None else "-"
        table.add_row(record["id"], str(ctl if ctl is not None else "-"), str(atl if atl is not None else "-"), form)
    console.print(table)
    console.print(f"✅ {len(records)} wellness days in range")


@app.command(name="sync-details")
def sync_details():
    """
    Fetch intervals for every stored activity that has no detail record
    """
    setup_logging()
    synchronizer = DataSynchronizer(store=_store())

    def progress(event: Dict[str, Any]) -> None:
        mark = "✅" if event["success"] else "⚠️"
        console.print(f"  {mark} {event['current']}/{event['total']} {event['item_id']}")

    try:
        result = synchronizer.sync_all_details(on_progress=progress)
    except SyncAppError as e:
        console.print(f"❌ [red]Detail sync aborted[/red]: {e}")
        raise typer.Exit(1)
    _print_results("Detail Sync", {"intervals": result})


@app.command(name="clean-stubs")
def clean_stubs():
    """
    Remove STRAVA stub activities (and their details) from the local store
    """
    setup_logging()
    removed = DataSynchronizer(store=_store()).clean_stub_activities()
    console.print(f"🧹 Removed {removed['removed']} stub activities and {removed['details_removed']} details")


@app.command()
def export(
    path: Path = typer.Argument(Path(f"{settings.snapshot_filename}.gz"), help="Output file (.gz compresses)"),
):
    """
    Export the local store as a snapshot file
    """
    setup_logging()
    store = _store()
    stats = snapshot_stats(store)

    table = Table(title="Snapshot Contents")
    table.add_column("Table", style="cyan")
    table.add_column("Records", style="yellow")
    table.add_column("Size", style="green")
    for name, info in stats["tables"].items():
        table.add_row(name, str(info["count"]), info["size"])
    table.add_row("[bold]Total[/bold]", "", stats["total_size"])
    console.print(table)

    written = write_snapshot_file(path, export_snapshot(store))
    console.print(f"✅ [green]Snapshot written to[/green] {path} ({format_bytes(written)})")


@app.command(name="import")
def import_(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot file (.json or .json.gz)"),
    clear: bool = typer.Option(False, "--clear", help="Empty the imported tables first"),
):
    """
    Import a snapshot file into the local store (all-or-nothing)
    """
    setup_logging()
    store = _store()
    try:
        document = read_snapshot_file(path)
        counts = import_snapshot(store, document, clear_existing=clear)
    except SnapshotError as e:
        console.print(f"❌ [red]Import failed, nothing was changed[/red]: {e}")
        raise typer.Exit(1)

    store.set_config("last_import_timestamp", document.get("timestamp"))
    table = Table(title="Imported")
    table.add_column("Table", style="cyan")
    table.add_column("Records", style="yellow")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command()
def bootstrap(
    base_url: Optional[str] = typer.Option(None, help="Snapshot host URL or local directory"),
):
    """
    Import the published snapshot when the local store is empty or older
    """
    setup_logging()
    result = BootstrapImporter(_store(), base_url=base_url).run()
    if result.error:
        console.print(f"❌ [red]{result.message}[/red]: {result.error}")
        raise typer.Exit(1)
    if result.action is BootstrapAction.NEEDS_MANUAL_SYNC:
        console.print(f"💡 [yellow]{result.message}[/yellow]")
        return
    console.print(f"✅ {result.message}")
    for name, count in result.counts.items():
        console.print(f"  • {name}: {count}")


@app.command()
def migrate(
    reload: bool = typer.Option(True, "--reload/--no-reload", help="Reload analyses from files after a purge"),
):
    """
    Purge coach analyses stored with the old (non-bilingual) schema
    """
    setup_logging()
    store = _store()
    result = SchemaMigrator(store).run()
    if not result.obsolete:
        console.print(f"✅ All {result.scanned} analyses use the current schema")
        return
    console.print(f"🔄 Purged {result.purged} analyses, migrated {result.migrated}")
    if result.reload_required and reload:
        loaded = AnalysisLoader(store).load_directory()
        console.print(f"📊 Reloaded {loaded['loaded']} analyses from {settings.analyses_dir}")


@app.command()
def status():
    """
    Show current synchronization status
    """
    setup_logging()

    console.print("📊 [bold blue]Data Synchronization Status[/bold blue]")
    status_data = DataSynchronizer(store=_store()).get_sync_status()

    sync_table = Table(title="Last Synchronization")
    sync_table.add_column("Step", style="cyan")
    sync_table.add_column("Last Sync", style="yellow")
    sync_table.add_column("Status", style="green")

    for step, last_sync in status_data["last_sync"].items():
        last_status = status_data["last_status"].get(step, "unknown")
        sync_time = datetime.fromisoformat(last_sync).strftime("%Y-%m-%d %H:%M") if last_sync else "Never"
        status_emoji = {
            "success": "✅",
            "error": "❌",
            "partial": "⚠️",
            "unknown": "❓"
        }.get(last_status, "❓")
        sync_table.add_row(step.title(), sync_time, f"{status_emoji} {last_status.title()}")
    console.print(sync_table)

    freshness_table = Table(title="Data Freshness")
    freshness_table.add_column("Data Type", style="cyan")
    freshness_table.add_column("Latest Date", style="yellow")
    freshness_table.add_column("Age", style="green")
    for label, key in (("Activities", "latest_activity_date"), ("Wellness", "latest_wellness_date")):
        latest = status_data["data_freshness"].get(key)
        if latest:
            age = (date.today() - date.fromisoformat(latest[:10])).days
            freshness_table.add_row(label, latest[:10], f"{age} days")
        else:
            freshness_table.add_row(label, "No data", "N/A")
    console.print(freshness_table)

    records_table = Table(title="Local Store")
    records_table.add_column("Table", style="cyan")
    records_table.add_column("Records", style="yellow")
    for name, count in status_data["records"].items():
        records_table.add_row(name, str(count))
    console.print(records_table)

    if status_data.get("last_import_timestamp"):
        console.print(f"📦 Last snapshot import: {status_data['last_import_timestamp']}")


@app.command()
def daemon():
    """
    Run as daemon with scheduled synchronization
    """
    logger = setup_logging()

    console.print("🔄 [bold blue]Starting SYNC APP Daemon[/bold blue]")
    console.print(f"📅 Sync interval: every {settings.sync_interval_hours} hours")

    store = _store()
    synchronizer = DataSynchronizer(store=store)

    if settings.bootstrap_base_url:
        BootstrapImporter(store).run()
    if SchemaMigrator(store).run().reload_required:
        AnalysisLoader(store).load_directory()

    def job() -> None:
        try:
            synchronizer.sync_recent()
        except AuthError as e:
            logger.error(f"❌ Scheduled sync needs new credentials: {e}")
        except SyncAppError as e:
            logger.error(f"❌ Scheduled sync failed: {e}")

    schedule.every(settings.sync_interval_hours).hours.do(job)

    logger.info("🚀 Running initial data sync")
    job()

    console.print("✅ [green]Daemon started. Press Ctrl+C to stop.[/green]")

    try:
        while True:
            schedule.run_pending()
            time.sleep(60)  # Check every minute

    except KeyboardInterrupt:
        logger.info("🛑 Daemon stopped by user")
        console.print("🛑 [yellow]Daemon stopped.[/yellow]")


if __name__ == "__main__":
    app()
