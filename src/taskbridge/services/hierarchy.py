"""Pure rules for the ClickUp folder -> list -> task hierarchy.

Nothing in here does I/O. The sync service fetches data and feeds it
through these functions, so every rule can be tested with plain lists.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from taskbridge.models.synced_task import EventPhase
from taskbridge.services.payloads import RemoteAssignee, RemoteList, RemoteTask

DEFAULT_AGENT_FIRST_NAME = "Agent"
PHASE_LIST_NAMES = ("Pre-Event", "Event Day", "Post-Event")
DONE_STATUSES = frozenset({"done", "closed", "complete", "completed"})

# "<First> [MM.DD.YY] <Title>", tolerating a dash after the date
FOLDER_NAME_RE = re.compile(r"^(\w+)\s+\[[\d.]+\]\s*-?\s*(.+)$")


@dataclass
class ListClassification:
    """The three phase lists of an event folder."""

    pre: RemoteList | None = None
    day: RemoteList | None = None
    post: RemoteList | None = None

    @property
    def complete(self) -> bool:
        return self.pre is not None and self.day is not None and self.post is not None

    def list_ids(self) -> dict[EventPhase, str | None]:
        return {
            EventPhase.PRE_EVENT: self.pre.id if self.pre else None,
            EventPhase.EVENT_DAY: self.day.id if self.day else None,
            EventPhase.POST_EVENT: self.post.id if self.post else None,
        }


def build_folder_name(agent_name: str | None, title: str, event_date: date) -> str:
    """Folder name for an event, e.g. ``"Dana [03.14.25] Spring Open House"``."""
    first_name = DEFAULT_AGENT_FIRST_NAME
    if agent_name and agent_name.split():
        first_name = agent_name.split()[0]
    return f"{first_name} [{event_date:%m.%d.%y}] {title}"


def parse_folder_name(name: str) -> tuple[str, str] | None:
    """Split a folder name into lowercased (agent first name, title)."""
    match = FOLDER_NAME_RE.match(name.strip())
    if not match:
        return None
    return match.group(1).lower(), match.group(2).strip().lower()


def classify_lists(lists: list[RemoteList]) -> ListClassification:
    """Assign folder lists to the pre / day / post phases.

    A name containing "pre" is the pre-event list, otherwise a name
    containing "post" is the post-event list, anything else is event day.
    When names leave a phase unassigned and the folder holds exactly three
    lists, their order decides instead.
    """
    result = ListClassification()
    for lst in lists:
        name = lst.name.lower()
        if "pre" in name:
            result.pre = lst
        elif "post" in name:
            result.post = lst
        else:
            result.day = lst

    if not result.complete and len(lists) == 3:
        result = ListClassification(pre=lists[0], day=lists[1], post=lists[2])
    return result


def has_tag(task: RemoteTask, tag: str) -> bool:
    wanted = tag.lower()
    return any(t.lower() == wanted for t in task.tags)


def select_included_tasks(tasks: list[RemoteTask], tag: str) -> list[RemoteTask]:
    """Tasks that carry the tag, plus direct subtasks of those tasks.

    A subtask is included through its parent even without the tag itself.
    Propagation is one level only and does not depend on input order.
    """
    tagged_ids = {task.id for task in tasks if has_tag(task, tag)}
    return [task for task in tasks if task.id in tagged_ids or task.parent in tagged_ids]


def parse_timestamp(raw: Any) -> datetime | None:
    """Epoch milliseconds (string or number) or ISO 8601 to an aware datetime."""
    if raw is None or raw == "":
        return None
    try:
        if isinstance(raw, int | float) or str(raw).lstrip("-").isdigit():
            return datetime.fromtimestamp(int(raw) / 1000, UTC)
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_due_date(raw: Any) -> date | None:
    """Remote due date to a date-only value; None when unparseable."""
    parsed = parse_timestamp(raw)
    return parsed.date() if parsed else None


def is_done_status(status: str | None) -> bool:
    return bool(status) and status.strip().lower() in DONE_STATUSES


def resolve_completed_at(
    status: str | None,
    date_done: Any,
    now: datetime,
) -> datetime | None:
    """Completion time, only for tasks whose status is a done status.

    A ``date_done`` on a task that is not done is ignored.
    """
    if not is_done_status(status):
        return None
    return parse_timestamp(date_done) or now


def responsible_person(assignees: list[RemoteAssignee]) -> str | None:
    names = [name for name in (a.display_name for a in assignees) if name]
    return ", ".join(names) if names else None


def resolve_agent_id(
    assignees: list[RemoteAssignee],
    agents_by_email: Mapping[str, str] | None,
    default: str | None = None,
) -> str | None:
    """First assignee whose email maps to a Hub agent, else ``default``."""
    if agents_by_email:
        for assignee in assignees:
            if assignee.email and assignee.email.lower() in agents_by_email:
                return agents_by_email[assignee.email.lower()]
    return default


def build_task_record(
    task: RemoteTask,
    event_id: str,
    *,
    phase: EventPhase | None,
    now: datetime,
    agent_id: str | None = None,
) -> dict[str, Any]:
    """Column values for upserting a task into ``clickup_tasks``."""
    return {
        "clickup_task_id": task.id,
        "event_id": event_id,
        "task_name": task.name,
        "status": task.status,
        "due_date": parse_due_date(task.due_date),
        "completed_at": resolve_completed_at(task.status, task.date_done, now),
        "responsible_person": responsible_person(task.assignees),
        "phase": phase.value if phase else None,
        "agent_id": agent_id,
        "updated_at": now,
    }
