"""ClickUp webhook endpoint tests."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from taskbridge.config import settings
from taskbridge.models import Event, SyncedTask, WorkflowRun, WorkflowStatus
from taskbridge.services.clickup import ClickUpError
from taskbridge.services.ledger import claim_workflow_run, complete_workflow_run
from taskbridge.services.payloads import RemoteAssignee
from tests.factories import FakeClickUp, make_task, signed_headers

TASKS_URL = "/api/webhooks/clickup/tasks"
THUMBNAIL_URL = "/api/webhooks/clickup/generate-thumbnail"
COPY_URL = "/api/webhooks/clickup/generate-copy"


@pytest.fixture
def mock_wake():
    with patch("taskbridge.api.webhooks.wake_processor", new_callable=AsyncMock) as wake:
        wake.return_value = True
        yield wake


@pytest.fixture
def remote(fake_clickup: FakeClickUp):
    """Route the task webhook's ClickUp calls to the fake client."""
    with patch("taskbridge.api.webhooks.get_clickup_client", return_value=fake_clickup):
        yield fake_clickup


def _body(payload) -> bytes:
    return json.dumps(payload).encode()


class TestTaskWebhook:
    """Tests for the task change webhook."""

    async def test_invalid_signature_rejected(self, client: AsyncClient, remote: FakeClickUp):
        body = _body({"task_id": "A", "list_id": "list-day"})
        response = await client.post(
            TASKS_URL, content=body, headers={"X-Signature": "00" * 32, "Content-Type": "application/json"}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    async def test_missing_signature_rejected(self, client: AsyncClient, remote: FakeClickUp):
        response = await client.post(TASKS_URL, content=_body({"task_id": "A"}))
        assert response.status_code == 401

    async def test_signature_covers_raw_body(self, client: AsyncClient, remote: FakeClickUp):
        body = _body({"task_id": "A", "list_id": "unknown"})
        headers = signed_headers(body)
        response = await client.post(TASKS_URL, content=body + b"\n", headers=headers)

        assert response.status_code == 401

    async def test_clickup_signature_header(self, client: AsyncClient, remote: FakeClickUp):
        body = _body({"task_id": "A", "list_id": "unknown"})
        headers = {"X-ClickUp-Signature": signed_headers(body)["X-Signature"]}
        response = await client.post(TASKS_URL, content=body, headers=headers)

        assert response.status_code == 200

    async def test_malformed_json_acknowledged(self, client: AsyncClient, remote: FakeClickUp):
        body = b"{not json"
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "skipped": True}

    async def test_missing_ids_acknowledged(self, client: AsyncClient, remote: FakeClickUp):
        body = _body({"event": "taskUpdated"})
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.json() == {"ok": True, "skipped": True}

    async def test_unmatched_list(self, client: AsyncClient, remote: FakeClickUp, event_with_lists: Event):
        body = _body({"task_id": "A", "list_id": "elsewhere"})
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "unmatched_list": "elsewhere"}

    async def test_unmatched_list_without_clickup_token(self, client: AsyncClient, event_with_lists: Event):
        missing_token = ClickUpError(None, "CLICKUP_API_TOKEN is not configured")
        factory_path = "taskbridge.api.webhooks.get_clickup_client"
        with patch(factory_path, side_effect=missing_token) as factory:
            body = _body({"task_id": "A", "list_id": "elsewhere"})
            response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "unmatched_list": "elsewhere"}
        factory.assert_not_called()

    async def test_linked_list_without_clickup_token_skipped(
        self, client: AsyncClient, event_with_lists: Event
    ):
        missing_token = ClickUpError(None, "CLICKUP_API_TOKEN is not configured")
        with patch("taskbridge.api.webhooks.get_clickup_client", side_effect=missing_token):
            body = _body({"task_id": "A", "list_id": "list-day"})
            response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.json() == {"ok": True, "skipped": True}

    async def test_untagged_task_ignored(self, client: AsyncClient, remote: FakeClickUp, event_with_lists: Event):
        remote.add_tasks("list-day", make_task("A"))
        body = _body({"task_id": "A", "list_id": "list-day"})
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.json() == {"ok": True, "ignored": True}

    async def test_tagged_task_synced(
        self,
        client: AsyncClient,
        session: AsyncSession,
        remote: FakeClickUp,
        event_with_lists: Event,
    ):
        remote.add_tasks("list-post", make_task("A", "Send thank-you notes", tags=("event",)))
        body = _body(
            {
                "event": "taskUpdated",
                "history_items": [{"after": {"id": "A", "list": {"id": "list-post"}}}],
            }
        )
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"ok": True}

        result = await session.execute(select(SyncedTask).where(SyncedTask.clickup_task_id == "A"))
        task = result.scalar_one()
        assert task.task_name == "Send thank-you notes"
        assert task.phase == "post_event"
        assert task.event_id == event_with_lists.id

    async def test_assignee_email_sets_agent(
        self,
        client: AsyncClient,
        session: AsyncSession,
        remote: FakeClickUp,
        event_with_lists: Event,
    ):
        remote.add_tasks(
            "list-day",
            make_task("A", tags=("event",), assignees=(RemoteAssignee(id="7", email="Riley@Example.com"),)),
            make_task("B", tags=("event",), assignees=(RemoteAssignee(id="8", email="nobody@example.com"),)),
        )

        with patch.object(settings, "clickup_agent_emails", {"riley@example.com": "agent-7"}):
            for task_id in ("A", "B"):
                body = _body({"task_id": task_id, "list_id": "list-day"})
                response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))
                assert response.json() == {"ok": True}

        result = await session.execute(select(SyncedTask))
        rows = {task.clickup_task_id: task for task in result.scalars().all()}
        assert rows["A"].agent_id == "agent-7"
        assert rows["B"].agent_id == event_with_lists.agent_id

    async def test_remote_failure_acknowledged(
        self, client: AsyncClient, remote: FakeClickUp, event_with_lists: Event
    ):
        body = _body({"task_id": "deleted", "list_id": "list-day"})
        response = await client.post(TASKS_URL, content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "skipped": True}


class TestArtifactWebhooks:
    """Tests for the thumbnail and copy generation webhooks."""

    async def test_unsigned_request_queues_run(self, client: AsyncClient, session: AsyncSession, mock_wake):
        response = await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["queued"] is True
        assert data["task_id"] == "abc123"

        run = await session.get(WorkflowRun, data["run_id"])
        assert run.idempotency_key == "generate-thumbnail:abc123"
        assert run.status == WorkflowStatus.QUEUED.value
        assert run.input == {"task_id": "abc123"}
        mock_wake.assert_awaited_once_with("generate-thumbnail")

    async def test_bad_signature_rejected(self, client: AsyncClient, mock_wake):
        body = _body({"task_id": "abc123"})
        response = await client.post(
            THUMBNAIL_URL, content=body, headers={"X-Signature": "deadbeef", "Content-Type": "application/json"}
        )

        assert response.status_code == 401
        mock_wake.assert_not_awaited()

    async def test_signed_request_accepted(self, client: AsyncClient, mock_wake):
        body = _body({"payload": {"id": "abc123"}})
        response = await client.post(COPY_URL, content=body, headers=signed_headers(body))

        assert response.json()["queued"] is True
        mock_wake.assert_awaited_once_with("generate-copy")

    async def test_duplicate_delivery_is_noop(self, client: AsyncClient, session: AsyncSession, mock_wake):
        first = await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})
        second = await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})

        assert first.json()["queued"] is True
        assert second.status_code == 200
        assert second.json() == {"ok": True, "already_processing": True}
        assert mock_wake.await_count == 1

        result = await session.execute(select(WorkflowRun))
        assert len(result.scalars().all()) == 1

    async def test_redelivery_after_completion_requeues(
        self, client: AsyncClient, session: AsyncSession, mock_wake
    ):
        first = (await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})).json()
        await claim_workflow_run(session, first["run_id"])
        await complete_workflow_run(session, first["run_id"], {"url": "https://cdn/thumb.png"})
        await session.commit()

        second = (await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})).json()

        assert second["queued"] is True
        assert second["run_id"] == first["run_id"]
        run = await session.get(WorkflowRun, first["run_id"])
        await session.refresh(run)
        assert run.status == WorkflowStatus.QUEUED.value
        assert run.output is None

    async def test_same_task_different_workflows(self, client: AsyncClient, mock_wake):
        thumb = (await client.post(THUMBNAIL_URL, json={"task_id": "abc123"})).json()
        copy = (await client.post(COPY_URL, json={"task_id": "abc123"})).json()

        assert thumb["queued"] is True
        assert copy["queued"] is True
        assert thumb["run_id"] != copy["run_id"]

    async def test_missing_task_id(self, client: AsyncClient, mock_wake):
        response = await client.post(THUMBNAIL_URL, json={"something": "else"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "skipped": True}
        mock_wake.assert_not_awaited()


class TestMethodNotAllowed:
    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    async def test_non_post_rejected(self, client: AsyncClient, method: str):
        response = await client.request(method, THUMBNAIL_URL)

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
