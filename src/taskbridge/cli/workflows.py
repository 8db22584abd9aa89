"""Workflow run management CLI commands."""

import asyncio
from datetime import datetime
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlmodel import select

from taskbridge.config import settings
from taskbridge.database import async_session_factory, get_session_context
from taskbridge.models import TriggerSource, WorkflowRun, WorkflowStatus
from taskbridge.services.ledger import force_requeue, list_steps

console = Console()
app = typer.Typer(help="Workflow run management commands")


def status_style(status: str) -> str:
    """Get Rich style for workflow status."""
    return {
        "queued": "yellow",
        "running": "cyan",
        "success": "green",
        "failed": "red",
        "skipped": "dim",
    }.get(status, "white")


def format_duration(start: datetime | None, end: datetime | None) -> str:
    """Format duration between two datetimes."""
    if not start:
        return "-"
    end_time = end or datetime.now(start.tzinfo)
    seconds = int((end_time - start).total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    else:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


async def _find_run(session, run_id: str) -> WorkflowRun | None:
    # Exact match first, then unique prefix
    run = await session.get(WorkflowRun, run_id)
    if run:
        return run
    result = await session.execute(select(WorkflowRun).where(WorkflowRun.id.startswith(run_id)))  # type: ignore[attr-defined]
    matches = result.scalars().all()
    return matches[0] if len(matches) == 1 else None


@app.command("list")
def list_runs(
    workflow: Annotated[str | None, typer.Option("--workflow", "-w", help="Filter by workflow name")] = None,
    status: Annotated[str | None, typer.Option("--status", "-s", help="Filter by status")] = None,
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum runs to show"),
):
    """List workflow runs, newest first."""

    async def _list():
        async with get_session_context() as session:
            stmt = select(WorkflowRun).order_by(WorkflowRun.created_at.desc()).limit(limit)  # type: ignore[attr-defined]

            if workflow:
                stmt = stmt.where(WorkflowRun.workflow_name == workflow)

            if status:
                valid_statuses = [s.value for s in WorkflowStatus]
                status_lower = status.lower()
                if status_lower not in valid_statuses:
                    console.print(f"[red]Error:[/red] Invalid status '{status}'")
                    console.print(f"Valid: {', '.join(valid_statuses)}")
                    raise typer.Exit(1)
                stmt = stmt.where(WorkflowRun.status == status_lower)

            result = await session.execute(stmt)
            runs = result.scalars().all()

            if not runs:
                console.print("[dim]No workflow runs found[/dim]")
                return

            table = Table(title="Workflow Runs")
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("Workflow", style="blue")
            table.add_column("Status")
            table.add_column("Key", style="dim")
            table.add_column("Duration", justify="right")
            table.add_column("Created", style="dim")

            for run in runs:
                style = status_style(run.status)
                table.add_row(
                    run.id,
                    run.workflow_name,
                    f"[{style}]{run.status}[/{style}]",
                    run.idempotency_key,
                    format_duration(run.started_at, run.finished_at),
                    run.created_at.strftime("%Y-%m-%d %H:%M") if run.created_at else "-",
                )

            console.print(table)
            console.print(f"[dim]Showing {len(runs)} runs[/dim]")

    asyncio.run(_list())


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID (or unique prefix)"),
):
    """Show a workflow run and its steps."""

    async def _show():
        async with get_session_context() as session:
            run = await _find_run(session, run_id)
            if not run:
                console.print(f"[red]Error:[/red] Workflow run '{run_id}' not found")
                raise typer.Exit(1)

            style = status_style(run.status)
            content = f"""[bold]Status:[/bold] [{style}]{run.status.upper()}[/{style}]
[bold]Workflow:[/bold] {run.workflow_name}
[bold]Key:[/bold] {run.idempotency_key}
[bold]Triggered by:[/bold] {run.triggered_by}
[bold]Duration:[/bold] {format_duration(run.started_at, run.finished_at)}

[bold]Started:[/bold] {run.started_at or 'Not started'}
[bold]Finished:[/bold] {run.finished_at or 'Not finished'}"""

            console.print(Panel(content, title=f"Run: {run.id}"))

            if run.error_message:
                console.print(f"\n[bold red]Error:[/bold red] {run.error_message}")

            if run.input:
                console.print("\n[bold]Input:[/bold]")
                for key, value in run.input.items():
                    console.print(f"  {key}: {value}")

            if run.output:
                console.print("\n[bold]Output:[/bold]")
                for key, value in run.output.items():
                    val_str = str(value)[:50] + "..." if len(str(value)) > 50 else str(value)
                    console.print(f"  {key}: {val_str}")

            steps = await list_steps(session, run.id)
            if steps:
                table = Table(title="Steps")
                table.add_column("Step", style="blue")
                table.add_column("Status")
                table.add_column("Duration", justify="right")
                table.add_column("Error", style="red")
                for step in steps:
                    step_style = status_style(step.status)
                    table.add_row(
                        step.step_name,
                        f"[{step_style}]{step.status}[/{step_style}]",
                        format_duration(step.started_at, step.finished_at),
                        step.error_message or "",
                    )
                console.print(table)

    asyncio.run(_show())


@app.command("requeue")
def requeue_run(
    run_id: str = typer.Argument(..., help="Run ID (or unique prefix)"),
):
    """Put a finished run back in the queue with its previous input."""

    async def _requeue():
        async with get_session_context() as session:
            run = await _find_run(session, run_id)
            if not run:
                console.print(f"[red]Error:[/red] Workflow run '{run_id}' not found")
                raise typer.Exit(1)

            result = await force_requeue(session, run.id, triggered_by=TriggerSource.MANUAL)
            await session.commit()

            if result is None or not result.queued:
                console.print(f"[yellow]Run {run.id} is still {run.status}, nothing to do[/yellow]")
                return
            console.print(f"[green]Re-queued[/green] {result.run.workflow_name} run {result.run.id}")

    asyncio.run(_requeue())


@app.command("process")
def process_runs(
    workflow: Annotated[str | None, typer.Option("--workflow", "-w", help="Only this workflow")] = None,
    limit: int = typer.Option(settings.process_batch_size, "--limit", "-l", help="Maximum runs to process"),
):
    """Drain queued runs in this process instead of the worker."""
    from taskbridge.services.processing import process_queued_runs

    async def _process():
        summary = await process_queued_runs(async_session_factory, workflow_name=workflow, limit=limit)
        console.print(
            f"Processed [bold]{summary.processed}[/bold] runs: "
            f"[green]{summary.succeeded} ok[/green], [red]{summary.failed} failed[/red], "
            f"[dim]{summary.skipped} skipped[/dim], {summary.remaining} remaining"
        )

    asyncio.run(_process())
