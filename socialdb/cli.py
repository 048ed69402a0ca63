"""Command-line interface for SocialDB.

This module provides a Typer-based CLI for managing the SocialDB schema.

Commands:
- migrate: Apply every pending migration
- rollback: Revert the most recently applied migration
- status: Show applied and pending migrations
- stats: Show row counts per table

Example:
    $ socialdb migrate
    $ socialdb status --database ./data/social_media.db
    $ socialdb rollback -v
    $ socialdb stats
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from socialdb.config import database_url_for, settings
from socialdb.database import Store
from socialdb.logging import setup_logging as configure_logging
from socialdb.migrator import MigrationRunner

T = TypeVar("T")

# Initialize CLI app
app = typer.Typer(
    name="socialdb",
    help="Schema migrations and maintenance for the SocialDB store",
    add_completion=False,
)
console = Console()

DATABASE_OPTION = typer.Option(
    None,
    "--database",
    "-d",
    help="Path to the SQLite database (defaults to settings.database_path)",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Enable verbose logging",
)


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr at DEBUG (verbose) or WARNING.

    Progress is printed by the commands themselves, so only problems are
    logged unless --verbose is given.
    """
    configure_logging(
        level="DEBUG" if verbose else "WARNING",
        json_logs=settings.log_json,
        colorize=not settings.log_json,
    )


def run_async(coro: Awaitable[T]) -> T:
    """Run async coroutine in event loop."""
    return asyncio.run(coro)  # type: ignore[arg-type]


def _database_url(database: Optional[Path]) -> str:
    return database_url_for(database) if database else settings.database_url


async def _with_runner(
    database: Optional[Path], action: Callable[[MigrationRunner], Awaitable[T]]
) -> T:
    async with Store(_database_url(database)) as store:
        return await action(MigrationRunner(store))


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def migrate(
    database: Optional[Path] = DATABASE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Apply every pending migration in order.

    Examples:
        $ socialdb migrate
        $ socialdb migrate --database ./data/social_media.db
    """
    setup_logging(verbose)
    console.print("🚀 [bold cyan]SocialDB Migrate[/bold cyan]\n")

    try:
        applied = run_async(_with_runner(database, lambda runner: runner.migrate()))
    except Exception as e:
        console.print(f"\n❌ [bold red]Migration failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if not applied:
        console.print("✅ [green]Schema is up to date[/green]")
        return
    for name in applied:
        console.print(f"  ✓ {name}")
    console.print(f"\n✅ [bold green]Applied {len(applied)} migration(s)[/bold green]")


@app.command()
def rollback(
    database: Optional[Path] = DATABASE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Revert the most recently applied migration.

    Examples:
        $ socialdb rollback
    """
    setup_logging(verbose)
    console.print("⏪ [bold cyan]SocialDB Rollback[/bold cyan]\n")

    try:
        name = run_async(_with_runner(database, lambda runner: runner.rollback()))
    except Exception as e:
        console.print(f"\n❌ [bold red]Rollback failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if name is None:
        console.print("📭 No migrations to roll back")
        return
    console.print(f"✅ [bold green]Rolled back {name}[/bold green]")


@app.command()
def status(
    database: Optional[Path] = DATABASE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show applied and pending migrations.

    Examples:
        $ socialdb status
    """
    setup_logging(verbose)
    console.print("📊 [bold cyan]SocialDB Migration Status[/bold cyan]\n")

    try:
        report = run_async(_with_runner(database, lambda runner: runner.status()))
    except Exception as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Migrations")
    table.add_column("", justify="center")
    table.add_column("Migration", style="cyan")
    table.add_column("Applied At", style="yellow")

    for entry in report.entries:
        mark = "[green]✓[/green]" if entry.applied else "[dim]○[/dim]"
        applied_at = entry.appliedAt.strftime("%Y-%m-%d %H:%M:%S") if entry.appliedAt else "-"
        table.add_row(mark, entry.name, applied_at)

    console.print(table)
    console.print(
        f"\nTotal: {report.total}  Applied: [green]{report.applied}[/green]  "
        f"Pending: [yellow]{report.pending}[/yellow]"
    )
    for name in report.orphaned:
        console.print(f"⚠️  [yellow]Applied but missing on disk: {name}[/yellow]")


@app.command()
def stats(
    database: Optional[Path] = DATABASE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show row counts per table.

    Examples:
        $ socialdb stats
    """
    setup_logging(verbose)
    console.print("📈 [bold cyan]SocialDB Statistics[/bold cyan]\n")

    async def _stats() -> dict[str, int]:
        async with Store(_database_url(database)) as store:
            return await store.table_counts()

    try:
        counts = run_async(_stats())
    except Exception as e:
        console.print(f"\n❌ [bold red]Stats failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if not counts:
        console.print("📭 No tables found, run [bold]socialdb migrate[/bold] first")
        return

    stats_table = Table(title="Database Statistics")
    stats_table.add_column("Table", style="cyan")
    stats_table.add_column("Rows", justify="right", style="green")
    for name, count in counts.items():
        stats_table.add_row(name, f"{count:,}")
    console.print(stats_table)


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
