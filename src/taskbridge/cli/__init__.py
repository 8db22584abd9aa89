"""CLI commands using Typer."""

import typer

from taskbridge.cli.db import app as db_app
from taskbridge.cli.events import app as events_app
from taskbridge.cli.sync import app as sync_app
from taskbridge.cli.workflows import app as workflows_app

app = typer.Typer(name="taskbridge", help="TaskBridge CLI")

# Register sub-apps
app.add_typer(db_app, name="db")
app.add_typer(workflows_app, name="workflows")
app.add_typer(events_app, name="events")
app.add_typer(sync_app, name="sync")


@app.command()
def version():
    """Show version information."""
    from taskbridge import __version__

    typer.echo(f"TaskBridge v{__version__}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
):
    """Run the API server."""
    import uvicorn

    from taskbridge.logging import get_uvicorn_log_config

    uvicorn.run(
        "taskbridge.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=get_uvicorn_log_config(),
    )


@app.command()
def worker(
    concurrency: int = typer.Option(2, help="Number of concurrent jobs"),
    cron: bool = typer.Option(True, "--cron/--no-cron", help="Schedule the sweep and sync cron jobs"),
):
    """Run the SAQ worker that drains queued runs and reconciles tasks."""
    import asyncio

    from saq import Worker

    from taskbridge.logging import setup_logging
    from taskbridge.tasks import get_queue_settings

    setup_logging()
    queue_settings = get_queue_settings()
    cron_jobs = queue_settings["cron_jobs"] if cron else []

    typer.echo(f"Starting worker with concurrency={concurrency}")
    for job in cron_jobs:
        typer.echo(f"  cron {job.cron}: {job.function.__name__}")

    saq_worker = Worker(
        queue=queue_settings["queue"],
        functions=queue_settings["functions"],
        concurrency=concurrency,
        cron_jobs=cron_jobs,
        startup=queue_settings["startup"],
        shutdown=queue_settings["shutdown"],
    )
    asyncio.run(saq_worker.start())


if __name__ == "__main__":
    app()
