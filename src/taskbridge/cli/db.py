"""Alembic wrappers for the ledger and event schema."""

import subprocess
import sys
from pathlib import Path

import typer
from rich.console import Console

console = Console()
app = typer.Typer(help="Database schema commands")

# alembic.ini sits at the project root, next to src/
ALEMBIC_INI = Path(__file__).resolve().parents[3] / "alembic.ini"


def run_alembic(*args: str, done: str | None = None, failed: str | None = None) -> None:
    """Run an alembic command, exiting non-zero if it fails."""
    command = [sys.executable, "-m", "alembic"]
    if ALEMBIC_INI.exists():
        command += ["-c", str(ALEMBIC_INI)]
    returncode = subprocess.run([*command, *args], check=False).returncode

    if returncode != 0:
        console.print(f"[red]{failed or 'alembic ' + args[0] + ' failed'}[/red]")
        raise typer.Exit(returncode)
    if done:
        console.print(f"[green]{done}[/green]")


@app.command("migrate")
def migrate(
    revision: str = typer.Argument("head", help="Target revision"),
):
    """Upgrade the schema (default: to head)."""
    console.print(f"[dim]Upgrading to {revision}...[/dim]")
    run_alembic("upgrade", revision, done="Schema up to date", failed="Migration failed")


@app.command("rollback")
def rollback(
    revision: str = typer.Argument("-1", help="Target revision (default: one step back)"),
):
    """Downgrade the schema."""
    console.print(f"[dim]Downgrading to {revision}...[/dim]")
    run_alembic("downgrade", revision, done="Rollback complete", failed="Rollback failed")


@app.command("current")
def current():
    """Show the revision the database is at."""
    run_alembic("current")


@app.command("history")
def history(
    limit: int = typer.Option(10, "--limit", "-l", help="Number of revisions to show"),
):
    """Show recent migrations."""
    run_alembic("history", f"-r-{limit}:")
