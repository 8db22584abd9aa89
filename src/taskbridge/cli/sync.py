"""ClickUp task sync CLI commands."""

import asyncio

import typer
from rich.console import Console

from taskbridge.database import async_session_factory, get_session_context
from taskbridge.services.clickup import get_clickup_client
from taskbridge.services.sync import get_event, phase_for_list, reconcile_list, sync_all_events

console = Console()
app = typer.Typer(help="ClickUp task sync commands")


@app.command("events")
def sync_events(
    tag: str | None = typer.Option(None, "--tag", "-t", help="Marker tag (default: CLICKUP_EVENT_TAG)"),
):
    """Reconcile tasks for every event with linked lists."""

    async def _sync():
        async with get_clickup_client() as client:
            summary = await sync_all_events(async_session_factory, client, tag=tag)

        console.print(f"Synced [bold]{summary.synced}[/bold] tasks across {summary.events} events")
        for error in summary.errors:
            console.print(f"[red]Error:[/red] {error}")
        if summary.errors:
            raise typer.Exit(1)

    asyncio.run(_sync())


@app.command("list")
def sync_list(
    list_id: str = typer.Argument(..., help="ClickUp list ID"),
    event_id: str = typer.Argument(..., help="Hub event ID owning the list"),
    tag: str | None = typer.Option(None, "--tag", "-t", help="Marker tag (default: CLICKUP_EVENT_TAG)"),
):
    """Reconcile a single ClickUp list into an event."""

    async def _sync():
        async with get_session_context() as session:
            event = await get_event(session, event_id)
            if not event:
                console.print(f"[red]Error:[/red] Event '{event_id}' not found")
                raise typer.Exit(1)

            async with get_clickup_client() as client:
                result = await reconcile_list(
                    session,
                    client,
                    event.id,
                    list_id,
                    tag=tag,
                    phase=phase_for_list(event, list_id),
                    agent_id=event.agent_id,
                )
            await session.commit()

            console.print(
                f"List {list_id}: {result.fetched} fetched, {result.included} included, "
                f"[green]{result.inserted} new[/green], {result.updated} refreshed"
            )

    asyncio.run(_sync())
