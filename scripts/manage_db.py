#!/usr/bin/env python3
"""
Database and worker management script for the Orrbit billing backend.
"""

import asyncio
import json
import sys

import typer
from rich.console import Console
from rich.table import Table

from alembic.config import Config
from alembic import command
from orrbit.core.database import close_database, init_database, get_session_maker, DatabaseManager
from orrbit.core.logging import setup_logging, get_logger
from orrbit.scheduler.main import build_renewal_worker

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Database and worker management commands")


@app.command()
def init():
    """Create all tables directly from the models."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("[green]Database initialized[/green]")

    asyncio.run(_init())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    command.upgrade(Config("alembic.ini"), revision)
    console.print(f"[green]Database upgraded to: {revision}[/green]")


@app.command()
def downgrade(revision: str):
    """Downgrade database to a specific revision."""
    command.downgrade(Config("alembic.ini"), revision)
    console.print(f"Database downgraded to: {revision}")


@app.command()
def current():
    """Show current database revision."""
    command.current(Config("alembic.ini"))


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", help="Skip confirmation")):
    """Drop all tables."""
    if not yes and not typer.confirm("Are you sure you want to drop all tables?"):
        console.print("Operation cancelled")
        return

    async def _reset():
        setup_logging()
        await init_database()
        await DatabaseManager.drop_tables()
        await close_database()
        console.print("[yellow]All tables dropped[/yellow]")

    asyncio.run(_reset())


@app.command()
def health():
    """Check database health."""
    async def _health() -> bool:
        setup_logging()
        await init_database()
        try:
            return await DatabaseManager.health_check()
        finally:
            await close_database()

    if asyncio.run(_health()):
        console.print("[green]Database is healthy[/green]")
    else:
        console.print("[red]Database health check failed[/red]")
        sys.exit(1)


@app.command("run-worker")
def run_worker(as_json: bool = typer.Option(False, "--json", help="Print the raw report")):
    """Run one renewal worker pass and print its report."""
    async def _run():
        setup_logging()
        await init_database()
        try:
            worker = await build_renewal_worker(get_session_maker())
            return await worker.run()
        finally:
            await close_database()

    report = asyncio.run(_run())
    data = report.to_dict()

    if as_json:
        console.print_json(json.dumps(data))
        return

    if report.skipped:
        console.print("[yellow]Skipped: another renewal pass holds the lock[/yellow]")
        return

    table = Table(title="Renewal Pass")
    table.add_column("Phase", style="cyan")
    for column in ("candidates", "processed", "skipped", "failed"):
        table.add_column(column.capitalize(), justify="right")
    for phase, counts in data["phases"].items():
        table.add_row(phase, *(str(counts[c]) for c in ("candidates", "processed", "skipped", "failed")))
    console.print(table)

    stats = Table(title="Daily Stats")
    stats.add_column("Metric", style="cyan")
    stats.add_column("Value", justify="right")
    for key, value in data["daily_stats"].items():
        stats.add_row(key, str(value))
    console.print(stats)

    if report.failed_rows:
        sys.exit(1)


if __name__ == "__main__":
    app()
