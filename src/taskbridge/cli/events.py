"""Event folder CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from taskbridge.database import get_session_context
from taskbridge.services.clickup import get_clickup_client
from taskbridge.services.sync import get_event, link_events_to_folders, provision_event_folder

console = Console()
app = typer.Typer(help="Event folder commands")


@app.command("provision")
def provision(
    event_id: str = typer.Argument(..., help="Hub event ID"),
):
    """Create the ClickUp folder and phase lists for an event."""

    async def _provision():
        async with get_session_context() as session:
            event = await get_event(session, event_id)
            if not event:
                console.print(f"[red]Error:[/red] Event '{event_id}' not found")
                raise typer.Exit(1)

            async with get_clickup_client() as client:
                result = await provision_event_folder(session, client, event)
            await session.commit()

            if not result.created:
                console.print(f"[yellow]Event already has folder {result.folder_id}[/yellow]")
                return

            source = "template" if result.from_template else "manual"
            console.print(f"[green]Created[/green] '{result.folder_name}' ({result.folder_id}, {source})")
            for phase, list_id in result.list_ids.items():
                console.print(f"  {phase}: {list_id or '[red]missing[/red]'}")

    asyncio.run(_provision())


@app.command("link")
def link(
    space_id: str | None = typer.Option(None, "--space", help="ClickUp space (default: CLICKUP_SPACE_ID)"),
):
    """Attach existing ClickUp event folders to their Hub events."""

    async def _link():
        async with get_session_context() as session:
            async with get_clickup_client() as client:
                summary = await link_events_to_folders(session, client, space_id)
            await session.commit()

            if summary.linked:
                table = Table(title="Linked")
                table.add_column("Folder", style="cyan")
                table.add_column("Event", style="green")
                for item in summary.linked:
                    table.add_row(item["folder"], item["event"])
                console.print(table)

            for item in summary.unmatched:
                console.print(f"[yellow]Unmatched:[/yellow] {item['folder']} [dim]({item['reason']})[/dim]")

            console.print(
                f"[dim]{summary.total_folders} folders: {len(summary.linked)} linked, "
                f"{len(summary.unmatched)} unmatched, {len(summary.already_linked)} already linked[/dim]"
            )

    asyncio.run(_link())
