"""ClickUp hierarchy synchronizer.

Provisions event folders, links existing folders to Hub events and
reconciles tagged tasks from the linked lists into ``clickup_tasks``.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

import httpx
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col, select

from taskbridge.config import settings
from taskbridge.database import upsert_insert
from taskbridge.models import ClickUpWebhook, Event, EventPhase, SyncedTask
from taskbridge.models.base import generate_nanoid, utcnow
from taskbridge.services.clickup import ClickUpClient, ClickUpError
from taskbridge.services.hierarchy import (
    PHASE_LIST_NAMES,
    ListClassification,
    build_folder_name,
    build_task_record,
    classify_lists,
    has_tag,
    parse_folder_name,
    resolve_agent_id,
    select_included_tasks,
)
from taskbridge.services.payloads import RemoteTask
from taskbridge.services.resilience import CircuitOpenError

logger = logging.getLogger(__name__)

# Errors from ClickUp that a caller can reasonably recover from
REMOTE_ERRORS = (ClickUpError, CircuitOpenError, httpx.HTTPError)


def agent_directory() -> dict[str, str]:
    """Lowercased assignee email -> Hub agent id, from CLICKUP_AGENT_EMAILS."""
    return {email.strip().lower(): agent_id for email, agent_id in settings.clickup_agent_emails.items()}


class SyncError(Exception):
    """A sync operation cannot start (missing event, no linked lists, ...)."""

    pass


class TaskSyncOutcome(str, Enum):
    """What happened to a single task delivered by webhook."""

    SYNCED = "synced"
    IGNORED = "ignored"
    UNMATCHED_LIST = "unmatched_list"


@dataclass
class ProvisionResult:
    event_id: str
    folder_id: str
    folder_name: str | None
    created: bool
    from_template: bool
    list_ids: dict[str, str | None]


@dataclass
class ReconcileResult:
    list_id: str
    fetched: int = 0
    included: int = 0
    inserted: int = 0
    updated: int = 0


@dataclass
class SyncSummary:
    events: int = 0
    synced: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class RegisterResult:
    event_id: str
    list_id: str
    webhook_id: str | None
    registration_id: str
    reconcile: ReconcileResult


@dataclass
class LinkSummary:
    linked: list[dict[str, str]] = field(default_factory=list)
    unmatched: list[dict[str, str]] = field(default_factory=list)
    already_linked: list[dict[str, str]] = field(default_factory=list)
    total_folders: int = 0


# Event lookups


async def get_event(session: AsyncSession, event_id: str) -> Event | None:
    stmt = select(Event).where(Event.id == event_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_next_upcoming_event(
    session: AsyncSession,
    agent_id: str | None = None,
    today: date | None = None,
) -> Event | None:
    """Earliest event on or after today, optionally for one agent."""
    stmt = select(Event).where(Event.event_date >= (today or date.today()))
    if agent_id:
        stmt = stmt.where(Event.agent_id == agent_id)
    stmt = stmt.order_by(col(Event.event_date).asc()).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def find_event_for_list(
    session: AsyncSession,
    list_id: str,
) -> tuple[Event, EventPhase | None] | None:
    """The event linked to a list, and which phase list it is.

    The phase is None when the list is only the legacy single-list link.
    """
    stmt = select(Event).where(
        or_(
            Event.clickup_pre_event_list_id == list_id,
            Event.clickup_event_day_list_id == list_id,
            Event.clickup_post_event_list_id == list_id,
            Event.clickup_list_id == list_id,
        )
    )
    result = await session.execute(stmt)
    event = result.scalars().first()
    if event is None:
        return None
    return event, phase_for_list(event, list_id)


def phase_for_list(event: Event, list_id: str) -> EventPhase | None:
    if list_id == event.clickup_pre_event_list_id:
        return EventPhase.PRE_EVENT
    if list_id == event.clickup_event_day_list_id:
        return EventPhase.EVENT_DAY
    if list_id == event.clickup_post_event_list_id:
        return EventPhase.POST_EVENT
    return None


def event_list_targets(event: Event) -> list[tuple[str, EventPhase | None]]:
    """Every distinct list linked to an event, phase lists first."""
    targets: list[tuple[str, EventPhase | None]] = []
    seen: set[str] = set()
    for list_id in (
        event.clickup_pre_event_list_id,
        event.clickup_event_day_list_id,
        event.clickup_post_event_list_id,
        event.clickup_list_id,
    ):
        if list_id and list_id not in seen:
            seen.add(list_id)
            targets.append((list_id, phase_for_list(event, list_id)))
    return targets


def apply_classification(event: Event, folder_id: str, lists: ListClassification) -> None:
    """Store a folder and its phase lists on an event."""
    ids = lists.list_ids()
    event.clickup_folder_id = folder_id
    event.clickup_pre_event_list_id = ids[EventPhase.PRE_EVENT]
    event.clickup_event_day_list_id = ids[EventPhase.EVENT_DAY]
    event.clickup_post_event_list_id = ids[EventPhase.POST_EVENT]


# Provisioning


async def _create_folder_from_template(client: ClickUpClient, name: str) -> str | None:
    """Instantiate the event folder template, or None if that is not possible."""
    try:
        templates = await client.get_folder_templates()
        template = next(
            (t for t in templates if "event" in str(t.get("name") or "").lower() and t.get("id")),
            None,
        )
        if template is None:
            logger.info("No event folder template found, creating folder manually")
            return None
        return await client.create_folder_from_template(str(template["id"]), name)
    except REMOTE_ERRORS as e:
        logger.warning(f"Folder template unavailable, falling back to manual creation: {e}")
        return None


async def provision_event_folder(
    session: AsyncSession,
    client: ClickUpClient,
    event: Event,
) -> ProvisionResult:
    """Create the ClickUp folder and phase lists for an event.

    Tries the workspace's event folder template first; if there is none or
    it fails, creates an empty folder and the three phase lists by hand.
    The resulting lists are classified and their ids stored on the event.
    An event that already has a folder is returned unchanged.
    """
    if event.clickup_folder_id:
        logger.info(f"Event {event.id} already has folder {event.clickup_folder_id}")
        return ProvisionResult(
            event_id=event.id,
            folder_id=event.clickup_folder_id,
            folder_name=None,
            created=False,
            from_template=False,
            list_ids={
                phase.value: list_id
                for phase, list_id in (
                    (EventPhase.PRE_EVENT, event.clickup_pre_event_list_id),
                    (EventPhase.EVENT_DAY, event.clickup_event_day_list_id),
                    (EventPhase.POST_EVENT, event.clickup_post_event_list_id),
                )
            },
        )

    name = build_folder_name(event.agent_name, event.title, event.event_date)
    folder_id = await _create_folder_from_template(client, name)
    from_template = folder_id is not None

    if folder_id is None:
        folder_id = await client.create_folder(name)
        for list_name in PHASE_LIST_NAMES:
            await client.create_list(folder_id, list_name)

    lists = classify_lists(await client.get_folder_lists(folder_id))
    if not lists.complete:
        logger.warning(f"Folder {folder_id} for event {event.id} is missing phase lists: {lists}")

    apply_classification(event, folder_id, lists)
    session.add(event)
    await session.flush()

    logger.info(f"Provisioned folder '{name}' ({folder_id}) for event {event.id}")
    return ProvisionResult(
        event_id=event.id,
        folder_id=folder_id,
        folder_name=name,
        created=True,
        from_template=from_template,
        list_ids={phase.value: list_id for phase, list_id in lists.list_ids().items()},
    )


# Reconciliation


async def upsert_task(session: AsyncSession, record: dict[str, Any]) -> None:
    """Insert or refresh one task row keyed on ``clickup_task_id``."""
    insert_stmt = upsert_insert(session, SyncedTask.__table__).values(id=generate_nanoid(), **record)
    stmt = insert_stmt.on_conflict_do_update(
        index_elements=["clickup_task_id"],
        set_={key: insert_stmt.excluded[key] for key in record if key != "clickup_task_id"},
    )
    await session.execute(stmt)


async def _existing_task_ids(session: AsyncSession, task_ids: list[str]) -> set[str]:
    if not task_ids:
        return set()
    stmt = select(SyncedTask.clickup_task_id).where(col(SyncedTask.clickup_task_id).in_(task_ids))
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def _touch_registrations(session: AsyncSession, list_id: str) -> None:
    stmt = (
        update(ClickUpWebhook)
        .where(col(ClickUpWebhook.list_id) == list_id)
        .where(col(ClickUpWebhook.active).is_(True))
        .values(last_sync_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def reconcile_list(
    session: AsyncSession,
    client: ClickUpClient,
    event_id: str,
    list_id: str,
    *,
    tag: str | None = None,
    phase: EventPhase | None = None,
    agent_id: str | None = None,
    agents_by_email: Mapping[str, str] | None = None,
) -> ReconcileResult:
    """Mirror the tagged tasks of one ClickUp list into ``clickup_tasks``.

    Fetches every task in the list (subtasks and closed included), keeps
    the tagged ones and their direct subtasks, and upserts each on its
    ClickUp id. Untagged tasks are left alone, even if a row for them
    exists from an earlier sync.

    Args:
        session: Database session (caller commits)
        client: ClickUp client
        event_id: Hub event owning the list
        list_id: ClickUp list to pull
        tag: Marker tag, defaults to CLICKUP_EVENT_TAG
        phase: Phase to record on each task, None for a legacy list
        agent_id: Fallback agent when no assignee email is recognised
        agents_by_email: Lowercased email -> agent id lookup, defaults to
            CLICKUP_AGENT_EMAILS

    Returns:
        ReconcileResult with fetched / included / inserted / updated counts
    """
    tag = tag or settings.clickup_event_tag
    if agents_by_email is None:
        agents_by_email = agent_directory()
    tasks = await client.list_tasks(list_id)
    included = select_included_tasks(tasks, tag)
    known = await _existing_task_ids(session, [task.id for task in included])

    now = utcnow()
    for task in included:
        record = build_task_record(
            task,
            event_id,
            phase=phase,
            now=now,
            agent_id=resolve_agent_id(task.assignees, agents_by_email, agent_id),
        )
        await upsert_task(session, record)

    await _touch_registrations(session, list_id)
    await session.flush()

    result = ReconcileResult(
        list_id=list_id,
        fetched=len(tasks),
        included=len(included),
        inserted=len([t for t in included if t.id not in known]),
        updated=len([t for t in included if t.id in known]),
    )
    logger.info(
        f"Reconciled list {list_id} for event {event_id}: {result.fetched} fetched, "
        f"{result.included} included, {result.inserted} new, {result.updated} refreshed"
    )
    return result


async def sync_event(
    session: AsyncSession,
    client: ClickUpClient,
    event: Event,
    *,
    tag: str | None = None,
    agents_by_email: Mapping[str, str] | None = None,
) -> list[ReconcileResult]:
    """Reconcile every list linked to one event, stopping at the first error."""
    targets = event_list_targets(event)
    if not targets:
        raise SyncError(f"Event {event.id} has no linked ClickUp lists")
    if agents_by_email is None:
        agents_by_email = agent_directory()

    results = []
    for list_id, phase in targets:
        results.append(
            await reconcile_list(
                session,
                client,
                event.id,
                list_id,
                tag=tag,
                phase=phase,
                agent_id=event.agent_id,
                agents_by_email=agents_by_email,
            )
        )
    return results


async def sync_all_events(
    session_factory: async_sessionmaker[AsyncSession],
    client: ClickUpClient,
    *,
    tag: str | None = None,
    concurrency: int | None = None,
    agents_by_email: Mapping[str, str] | None = None,
) -> SyncSummary:
    """Reconcile every event that has linked lists.

    Events run concurrently (bounded by ``concurrency``), each in its own
    session; lists within an event run one after another. A failing list
    is recorded in ``errors`` and the remaining lists and events still run.
    """
    async with session_factory() as session:
        stmt = select(Event).where(
            or_(
                col(Event.clickup_list_id).is_not(None),
                col(Event.clickup_pre_event_list_id).is_not(None),
                col(Event.clickup_event_day_list_id).is_not(None),
                col(Event.clickup_post_event_list_id).is_not(None),
            )
        )
        result = await session.execute(stmt)
        events = [
            (event.id, event.title, event.agent_id, event_list_targets(event))
            for event in result.scalars().all()
        ]

    if agents_by_email is None:
        agents_by_email = agent_directory()
    summary = SyncSummary(events=len(events))
    semaphore = asyncio.Semaphore(concurrency or settings.sync_concurrency)

    async def sync_one(
        event_id: str,
        title: str,
        agent_id: str | None,
        targets: list[tuple[str, EventPhase | None]],
    ) -> None:
        async with semaphore, session_factory() as session:
            for list_id, phase in targets:
                try:
                    reconciled = await reconcile_list(
                        session,
                        client,
                        event_id,
                        list_id,
                        tag=tag,
                        phase=phase,
                        agent_id=agent_id,
                        agents_by_email=agents_by_email,
                    )
                    await session.commit()
                    summary.synced += reconciled.included
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Sync failed for event {event_id} list {list_id}: {e}")
                    summary.errors.append(f"Event '{title}' ({event_id}) list {list_id}: {e}")

    await asyncio.gather(*(sync_one(*event) for event in events))

    logger.info(
        f"Synced {summary.synced} tasks across {summary.events} events "
        f"({len(summary.errors)} errors)"
    )
    return summary


# Registration


async def upsert_registration(
    session: AsyncSession,
    *,
    list_id: str,
    team_id: str,
    webhook_id: str | None,
    event_id: str | None,
) -> ClickUpWebhook:
    """Create or refresh the single active registration for (list, event)."""

    async def find_active() -> ClickUpWebhook | None:
        stmt = select(ClickUpWebhook).where(
            ClickUpWebhook.list_id == list_id,
            col(ClickUpWebhook.active).is_(True),
        )
        if event_id is None:
            stmt = stmt.where(col(ClickUpWebhook.event_id).is_(None))
        else:
            stmt = stmt.where(ClickUpWebhook.event_id == event_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    registration = await find_active()
    if registration is None:
        registration = ClickUpWebhook(
            list_id=list_id, team_id=team_id, webhook_id=webhook_id, event_id=event_id
        )
        try:
            async with session.begin_nested():
                session.add(registration)
                await session.flush()
            return registration
        except IntegrityError:
            registration = await find_active()
            if registration is None:
                raise

    registration.team_id = team_id
    registration.webhook_id = webhook_id or registration.webhook_id
    session.add(registration)
    await session.flush()
    return registration


async def register_and_sync(
    session: AsyncSession,
    client: ClickUpClient,
    *,
    list_id: str,
    event_id: str | None = None,
    agent_id: str | None = None,
    team_id: str | None = None,
    tag: str | None = None,
    webhook_endpoint: str | None = None,
) -> RegisterResult:
    """Link a list to an event, subscribe to its changes and pull it once.

    Without ``event_id`` the next upcoming event (for ``agent_id`` if
    given) is used.

    Raises:
        SyncError: If no event can be resolved
    """
    if event_id:
        event = await get_event(session, event_id)
        if event is None:
            raise SyncError(f"Event {event_id} not found")
    else:
        event = await get_next_upcoming_event(session, agent_id)
        if event is None:
            raise SyncError("No upcoming event found to link")

    team = team_id or settings.clickup_team_id
    event.clickup_list_id = list_id
    session.add(event)
    await session.flush()

    webhook_id = await client.create_webhook(
        webhook_endpoint or settings.task_webhook_endpoint, team_id=team
    )
    registration = await upsert_registration(
        session, list_id=list_id, team_id=team, webhook_id=webhook_id, event_id=event.id
    )
    reconciled = await reconcile_list(
        session,
        client,
        event.id,
        list_id,
        tag=tag,
        phase=phase_for_list(event, list_id),
        agent_id=event.agent_id,
    )

    return RegisterResult(
        event_id=event.id,
        list_id=list_id,
        webhook_id=webhook_id,
        registration_id=registration.id,
        reconcile=reconciled,
    )


# Folder linking


def _match_event(events: list[Event], agent_first_name: str, title: str) -> Event | None:
    for event in events:
        event_title = event.title.lower()
        if title not in event_title and event_title not in title:
            continue
        first_name = event.agent_first_name
        if first_name and first_name.lower() == agent_first_name:
            return event
    return None


async def link_events_to_folders(
    session: AsyncSession,
    client: ClickUpClient,
    space_id: str | None = None,
) -> LinkSummary:
    """Attach existing ClickUp event folders to their Hub events.

    Folder names are parsed as ``"<First> [MM.DD.YY] <Title>"``. An event
    matches when either title contains the other and the agent's first
    name equals the folder prefix. The folder's lists are classified and
    the legacy list link is pointed at the first phase list found.
    """
    folders = await client.get_space_folders(space_id)
    result = await session.execute(select(Event))
    events = list(result.scalars().all())
    summary = LinkSummary(total_folders=len(folders))

    for folder in folders:
        parsed = parse_folder_name(folder.name)
        if parsed is None:
            summary.unmatched.append({"folder": folder.name, "reason": "Could not parse folder name"})
            continue

        agent_first_name, title = parsed
        event = _match_event(events, agent_first_name, title)
        if event is None:
            summary.unmatched.append(
                {
                    "folder": folder.name,
                    "reason": f'No Hub event matched (agent: "{agent_first_name}", title: "{title}")',
                }
            )
            continue

        if event.clickup_folder_id == folder.id:
            summary.already_linked.append({"folder": folder.name, "event": event.title})
            continue

        lists = classify_lists(folder.lists)
        apply_classification(event, folder.id, lists)
        event.clickup_list_id = (
            event.clickup_pre_event_list_id
            or event.clickup_event_day_list_id
            or event.clickup_post_event_list_id
        )
        session.add(event)
        summary.linked.append({"folder": folder.name, "event": event.title, "event_id": event.id})

    await session.flush()
    logger.info(
        f"Linked {len(summary.linked)} events, {len(summary.unmatched)} unmatched, "
        f"{len(summary.already_linked)} already linked"
    )
    return summary


# Webhook-driven single task sync


async def _parent_has_tag(client: ClickUpClient, task: RemoteTask, tag: str) -> bool:
    if not task.parent:
        return False
    try:
        parent = await client.get_task(task.parent)
    except REMOTE_ERRORS as e:
        logger.warning(f"Could not fetch parent {task.parent} of task {task.id}: {e}")
        return False
    return has_tag(parent, tag)


async def sync_task_from_webhook(
    session: AsyncSession,
    client: ClickUpClient,
    task_id: str,
    list_id: str,
    *,
    tag: str | None = None,
    agents_by_email: Mapping[str, str] | None = None,
) -> TaskSyncOutcome:
    """Upsert one task reported by a webhook, if it belongs to a linked event.

    The full task is fetched rather than trusting the webhook body. A task
    is kept when it carries the tag or its parent does. Its agent is taken
    from the first recognised assignee email, falling back to the event's.

    Raises:
        ClickUpError: If the task itself cannot be fetched
    """
    tag = tag or settings.clickup_event_tag
    match = await find_event_for_list(session, list_id)
    if match is None:
        return TaskSyncOutcome.UNMATCHED_LIST
    event, phase = match

    task = await client.get_task(task_id)
    if not has_tag(task, tag) and not await _parent_has_tag(client, task, tag):
        logger.debug(f"Task {task_id} is not tagged '{tag}', ignoring")
        return TaskSyncOutcome.IGNORED

    if agents_by_email is None:
        agents_by_email = agent_directory()
    record = build_task_record(
        task,
        event.id,
        phase=phase,
        now=utcnow(),
        agent_id=resolve_agent_id(task.assignees, agents_by_email, event.agent_id),
    )
    await upsert_task(session, record)
    await session.flush()
    logger.info(f"Synced task {task_id} for event {event.id} from webhook")
    return TaskSyncOutcome.SYNCED
