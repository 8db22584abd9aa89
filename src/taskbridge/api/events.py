"""Event folder provisioning and ClickUp task sync endpoints."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from taskbridge.api.deps import ClickUpDep, InternalAuth, SessionDep, SessionFactoryDep
from taskbridge.models.event import EventRead
from taskbridge.services.sync import (
    REMOTE_ERRORS,
    SyncError,
    get_event,
    link_events_to_folders,
    provision_event_folder,
    register_and_sync,
    sync_all_events,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[InternalAuth])


class ProvisionResponse(BaseModel):
    event: EventRead
    folder_id: str
    folder_name: str | None
    created: bool
    from_template: bool


class RegisterRequest(BaseModel):
    list_id: str = Field(min_length=1)
    event_id: str | None = None
    agent_id: str | None = None
    team_id: str | None = None
    tag: str | None = None


class RegisterResponse(BaseModel):
    ok: bool = True
    linked_event_id: str
    webhook_id: str | None
    registration_id: str
    fetched: int
    included: int
    inserted: int
    updated: int


class SyncRequest(BaseModel):
    tag: str | None = None


class SyncResponse(BaseModel):
    events: int
    synced: int
    errors: list[str]


class LinkResponse(BaseModel):
    message: str
    linked: list[dict[str, str]]
    unmatched: list[dict[str, str]]
    already_linked: list[dict[str, str]]
    total_folders: int


def _bad_gateway(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"ClickUp request failed: {e}")


@router.post("/{event_id}/clickup-folder", response_model=ProvisionResponse)
async def create_event_folder(event_id: str, session: SessionDep, client: ClickUpDep):
    """Create the ClickUp folder and phase lists for an event."""
    event = await get_event(session, event_id)
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event '{event_id}' not found",
        )

    try:
        result = await provision_event_folder(session, client, event)
    except REMOTE_ERRORS as e:
        await session.rollback()
        logger.error(f"Provisioning folder for event {event_id} failed: {e}")
        raise _bad_gateway(e) from e
    await session.commit()

    return ProvisionResponse(
        event=EventRead.model_validate(event),
        folder_id=result.folder_id,
        folder_name=result.folder_name,
        created=result.created,
        from_template=result.from_template,
    )


@router.post("/register-and-sync", response_model=RegisterResponse)
async def register_list_and_sync(
    request: RegisterRequest,
    session: SessionDep,
    client: ClickUpDep,
):
    """Link a ClickUp list to an event, subscribe to it and pull its tasks."""
    try:
        result = await register_and_sync(
            session,
            client,
            list_id=request.list_id,
            event_id=request.event_id,
            agent_id=request.agent_id,
            team_id=request.team_id,
            tag=request.tag,
        )
    except SyncError as e:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except REMOTE_ERRORS as e:
        await session.rollback()
        logger.error(f"Register-and-sync for list {request.list_id} failed: {e}")
        raise _bad_gateway(e) from e
    await session.commit()

    return RegisterResponse(
        linked_event_id=result.event_id,
        webhook_id=result.webhook_id,
        registration_id=result.registration_id,
        fetched=result.reconcile.fetched,
        included=result.reconcile.included,
        inserted=result.reconcile.inserted,
        updated=result.reconcile.updated,
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_events(
    session_factory: SessionFactoryDep,
    client: ClickUpDep,
    request: SyncRequest | None = None,
):
    """Reconcile tasks for every linked event; per-list failures are reported, not raised."""
    summary = await sync_all_events(
        session_factory, client, tag=request.tag if request else None
    )
    return SyncResponse(**asdict(summary))


@router.post("/link-folders", response_model=LinkResponse)
async def link_folders(session: SessionDep, client: ClickUpDep):
    """Attach existing ClickUp event folders to their Hub events."""
    try:
        summary = await link_events_to_folders(session, client)
    except REMOTE_ERRORS as e:
        await session.rollback()
        raise _bad_gateway(e) from e
    await session.commit()

    return LinkResponse(
        message=(
            f"Linked {len(summary.linked)} events, {len(summary.unmatched)} unmatched, "
            f"{len(summary.already_linked)} already linked"
        ),
        **asdict(summary),
    )
