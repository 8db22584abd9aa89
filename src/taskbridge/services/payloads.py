"""Tolerant parsing of ClickUp REST and webhook payloads.

ClickUp sends several shapes for the same thing (nested status objects or
plain strings, ids at the top level or inside ``task`` or inside history
items). Everything here accepts any of them and never raises on a shape
it does not recognise.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RemoteAssignee:
    """An assignee on a ClickUp task."""

    id: str | None
    username: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.username or self.email or self.id


@dataclass
class RemoteTask:
    """A task (or subtask) as returned by ClickUp."""

    id: str
    name: str
    status: str | None = None
    parent: str | None = None
    list_id: str | None = None
    tags: list[str] = field(default_factory=list)
    assignees: list[RemoteAssignee] = field(default_factory=list)
    due_date: str | None = None
    date_done: str | None = None


@dataclass
class RemoteList:
    """A list inside a ClickUp folder."""

    id: str
    name: str


@dataclass
class RemoteFolder:
    """A ClickUp folder with its child lists."""

    id: str
    name: str
    lists: list[RemoteList] = field(default_factory=list)


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _dig(data: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists, returning None on the first missing hop."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


def parse_status(raw: Any) -> str | None:
    """Status name from either ``{"status": "done"}`` or a bare string."""
    if isinstance(raw, dict):
        return _as_str(raw.get("status"))
    return _as_str(raw)


def parse_assignee(raw: Any) -> RemoteAssignee | None:
    if not isinstance(raw, dict):
        return None
    return RemoteAssignee(
        id=_as_str(raw.get("id")),
        username=_as_str(raw.get("username")),
        email=_as_str(raw.get("email")),
    )


def parse_task(raw: dict[str, Any]) -> RemoteTask | None:
    """Build a RemoteTask from a REST or webhook task object.

    Returns None when the object has no id.
    """
    task_id = _as_str(raw.get("id"))
    if not task_id:
        return None

    tags = []
    for tag in raw.get("tags") or []:
        name = tag.get("name") if isinstance(tag, dict) else tag
        if name:
            tags.append(str(name))

    assignees = [a for a in (parse_assignee(item) for item in raw.get("assignees") or []) if a]

    return RemoteTask(
        id=task_id,
        name=str(raw.get("name") or ""),
        status=parse_status(raw.get("status")),
        parent=_as_str(raw.get("parent")),
        list_id=_as_str(_dig(raw, "list", "id")),
        tags=tags,
        assignees=assignees,
        due_date=_as_str(raw.get("due_date")),
        date_done=_as_str(raw.get("date_done") or raw.get("date_closed")),
    )


def parse_tasks(items: list[Any]) -> list[RemoteTask]:
    """Parse a task array, dropping entries without an id."""
    tasks = []
    for item in items:
        if isinstance(item, dict):
            task = parse_task(item)
            if task:
                tasks.append(task)
    return tasks


def parse_list(raw: Any) -> RemoteList | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return RemoteList(id=str(raw["id"]), name=str(raw.get("name") or ""))


def parse_lists(items: list[Any]) -> list[RemoteList]:
    return [lst for lst in (parse_list(item) for item in items) if lst]


def parse_folder(raw: Any) -> RemoteFolder | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return RemoteFolder(
        id=str(raw["id"]),
        name=str(raw.get("name") or ""),
        lists=parse_lists(raw.get("lists") or []),
    )


def extract_task_event_keys(payload: Any) -> tuple[str | None, str | None]:
    """Task and list ids from a task-change webhook.

    Looks at the top level, then the embedded ``task`` object, then the
    first history item's ``after`` value.

    Returns:
        (task_id, list_id), either of which may be None
    """
    if not isinstance(payload, dict):
        return None, None

    task_id = (
        _as_str(payload.get("task_id"))
        or _as_str(_dig(payload, "task", "id"))
        or _as_str(_dig(payload, "history_items", 0, "after", "id"))
    )
    list_id = (
        _as_str(payload.get("list_id"))
        or _as_str(_dig(payload, "task", "list", "id"))
        or _as_str(_dig(payload, "history_items", 0, "after", "list", "id"))
    )
    return task_id, list_id


def extract_artifact_task_id(payload: Any) -> str | None:
    """Task id from an artifact-generation webhook (ClickUp Automation body)."""
    if not isinstance(payload, dict):
        return None
    return (
        _as_str(payload.get("task_id"))
        or _as_str(_dig(payload, "task", "id"))
        or _as_str(_dig(payload, "payload", "id"))
    )


def extract_folder_id(payload: Any) -> str | None:
    """Folder id from a folder-creation response (``id`` or ``folder.id``)."""
    if not isinstance(payload, dict):
        return None
    return _as_str(payload.get("id")) or _as_str(_dig(payload, "folder", "id"))


def extract_webhook_id(payload: Any) -> str | None:
    """Webhook id from a webhook-creation response (``webhook.id`` or ``id``)."""
    if not isinstance(payload, dict):
        return None
    return _as_str(_dig(payload, "webhook", "id")) or _as_str(payload.get("id"))
