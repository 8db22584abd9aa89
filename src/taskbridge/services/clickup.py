"""ClickUp REST API client with retry and circuit breaking."""

import logging
import time
from typing import Any

import httpx

from taskbridge.config import settings
from taskbridge.services.payloads import (
    RemoteFolder,
    RemoteList,
    RemoteTask,
    extract_folder_id,
    extract_webhook_id,
    parse_folder,
    parse_list,
    parse_lists,
    parse_task,
    parse_tasks,
)
from taskbridge.services.resilience import CircuitBreaker, clickup_circuit, with_retry

logger = logging.getLogger(__name__)

# Events a list webhook subscribes to
WEBHOOK_EVENTS = [
    "taskCreated",
    "taskUpdated",
    "taskDeleted",
    "taskTimeTrackedUpdated",
    "taskAssigneeUpdated",
    "taskDueDateUpdated",
    "taskMoved",
]


class ClickUpError(Exception):
    """Non-2xx response (after retries) or unusable response from ClickUp."""

    def __init__(self, status_code: int | None, message: str, *, retry_after: float | None = None):
        self.status_code = status_code
        self.message = message
        self.retry_after = retry_after
        super().__init__(f"ClickUp API error ({status_code}): {message}")

    @property
    def retryable(self) -> bool:
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )


def _retry_after(response: httpx.Response) -> float | None:
    """Seconds until the rate limit window resets, from ClickUp's headers."""
    reset = response.headers.get("X-RateLimit-Reset", "")
    if reset.isdigit():
        return float(reset) - time.time()
    retry_after = response.headers.get("Retry-After", "")
    if retry_after.isdigit():
        return float(retry_after)
    return None


class ClickUpClient:
    """Thin async wrapper over the endpoints the synchronizer needs.

    Use as an async context manager so the connection pool is closed::

        async with get_clickup_client() as client:
            tasks = await client.list_tasks(list_id)
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.clickup.com/api/v2",
        team_id: str = "",
        space_id: str = "",
        timeout: float = 20.0,
        page_size: int = 100,
        max_attempts: int = 3,
        retry_wait: float = 1.0,
        circuit: CircuitBreaker | None = clickup_circuit,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token:
            raise ClickUpError(None, "CLICKUP_API_TOKEN is not configured")
        self.team_id = team_id
        self.space_id = space_id
        self.page_size = page_size
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.circuit = circuit
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": token, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ClickUpClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, path, **kwargs)
        if response.is_error:
            raise ClickUpError(
                response.status_code,
                response.text[:500],
                retry_after=_retry_after(response) if response.status_code == 429 else None,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ClickUpError(response.status_code, f"Invalid JSON response: {e}") from e

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request, retrying 429/5xx/transport errors with backoff."""

        async def attempt() -> Any:
            return await with_retry(
                self._send,
                method,
                path,
                max_attempts=self.max_attempts,
                min_wait=self.retry_wait,
                max_wait=self.retry_wait * 10,
                **kwargs,
            )

        logger.debug(f"ClickUp {method} {path}")
        if self.circuit:
            return await self.circuit.call(attempt)
        return await attempt()

    # Tasks

    async def get_task(self, task_id: str) -> RemoteTask:
        data = await self.request("GET", f"/task/{task_id}")
        task = parse_task(data) if isinstance(data, dict) else None
        if task is None:
            raise ClickUpError(None, f"Task {task_id} response has no id")
        return task

    async def list_tasks(self, list_id: str) -> list[RemoteTask]:
        """All tasks in a list, including subtasks and closed tasks.

        Pages are fetched until one comes back short.
        """
        tasks: list[RemoteTask] = []
        page = 0
        while True:
            data = await self.request(
                "GET",
                f"/list/{list_id}/task",
                params={
                    "subtasks": "true",
                    "include_closed": "true",
                    "page": page,
                    "limit": self.page_size,
                },
            )
            batch = (data.get("tasks") or []) if isinstance(data, dict) else []
            tasks.extend(parse_tasks(batch))
            if len(batch) < self.page_size:
                break
            page += 1
        logger.debug(f"Fetched {len(tasks)} tasks from list {list_id} in {page + 1} page(s)")
        return tasks

    # Folders and lists

    async def get_folder_templates(self) -> list[dict[str, Any]]:
        data = await self.request("GET", f"/team/{self.team_id}/folder_template")
        if not isinstance(data, dict):
            return []
        return list(data.get("templates") or data.get("folder_templates") or [])

    async def create_folder_from_template(self, template_id: str, name: str) -> str:
        data = await self.request(
            "POST",
            f"/space/{self.space_id}/folder_template/{template_id}",
            json={"name": name},
        )
        folder_id = extract_folder_id(data)
        if not folder_id:
            raise ClickUpError(None, "Template instantiation returned no folder id")
        return folder_id

    async def create_folder(self, name: str) -> str:
        data = await self.request("POST", f"/space/{self.space_id}/folder", json={"name": name})
        folder_id = extract_folder_id(data)
        if not folder_id:
            raise ClickUpError(None, "Folder creation returned no folder id")
        return folder_id

    async def create_list(self, folder_id: str, name: str) -> RemoteList:
        data = await self.request("POST", f"/folder/{folder_id}/list", json={"name": name})
        created = parse_list(data)
        if created is None:
            raise ClickUpError(None, f"List creation in folder {folder_id} returned no id")
        return created

    async def get_folder_lists(self, folder_id: str) -> list[RemoteList]:
        data = await self.request("GET", f"/folder/{folder_id}/list")
        return parse_lists(data.get("lists") or []) if isinstance(data, dict) else []

    async def get_space_folders(self, space_id: str | None = None) -> list[RemoteFolder]:
        data = await self.request("GET", f"/space/{space_id or self.space_id}/folder")
        if not isinstance(data, dict):
            return []
        folders = (parse_folder(item) for item in data.get("folders") or [])
        return [folder for folder in folders if folder]

    # Webhooks

    async def create_webhook(self, endpoint: str, team_id: str | None = None) -> str | None:
        """Subscribe ``endpoint`` to task events for the team.

        Returns:
            The ClickUp webhook id, if the response carried one
        """
        data = await self.request(
            "POST",
            f"/team/{team_id or self.team_id}/webhook",
            json={"endpoint": endpoint, "events": WEBHOOK_EVENTS, "status": "active"},
        )
        return extract_webhook_id(data)


def get_clickup_client(**overrides: Any) -> ClickUpClient:
    """Build a client from settings."""
    options: dict[str, Any] = {
        "base_url": settings.clickup_api_base,
        "team_id": settings.clickup_team_id,
        "space_id": settings.clickup_space_id,
        "timeout": settings.clickup_timeout_seconds,
        "page_size": settings.clickup_page_size,
    }
    options.update(overrides)
    return ClickUpClient(settings.clickup_api_token, **options)
