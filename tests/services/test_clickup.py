"""ClickUp client and resilience tests."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from taskbridge.services.clickup import WEBHOOK_EVENTS, ClickUpClient, ClickUpError, get_clickup_client
from taskbridge.services.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    RateLimitAwareWait,
    is_retryable,
)


def make_client(handler, **kwargs) -> ClickUpClient:
    options = {
        "base_url": "https://clickup.test/api/v2",
        "team_id": "team-1",
        "space_id": "space-1",
        "page_size": 2,
        "retry_wait": 0,
        "circuit": None,
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return ClickUpClient("pk_test", **options)


class TestClickUpClient:
    """Tests for the REST wrapper."""

    async def test_get_task_sends_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "t1", "name": "Hang banner", "status": {"status": "open"}})

        async with make_client(handler) as client:
            task = await client.get_task("t1")

        assert seen == {"auth": "pk_test", "path": "/api/v2/task/t1"}
        assert task.name == "Hang banner"
        assert task.status == "open"

    async def test_list_tasks_paginates(self):
        pages = {
            "0": [{"id": "a"}, {"id": "b"}],
            "1": [{"id": "c"}, {"id": "d"}],
            "2": [{"id": "e"}],
        }
        params = []

        def handler(request: httpx.Request) -> httpx.Response:
            params.append(dict(request.url.params))
            return httpx.Response(200, json={"tasks": pages[request.url.params["page"]]})

        async with make_client(handler) as client:
            tasks = await client.list_tasks("list-1")

        assert [t.id for t in tasks] == ["a", "b", "c", "d", "e"]
        assert [p["page"] for p in params] == ["0", "1", "2"]
        assert params[0]["subtasks"] == "true"
        assert params[0]["include_closed"] == "true"
        assert params[0]["limit"] == "2"

    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, json={"id": "t1", "name": "ok"})

        async with make_client(handler) as client:
            task = await client.get_task("t1")

        assert task.id == "t1"
        assert len(calls) == 3

    async def test_retries_transport_errors_then_gives_up(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler, max_attempts=2) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get_task("t1")

        assert len(calls) == 2

    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"err": "Task not found"})

        async with make_client(handler) as client:
            with pytest.raises(ClickUpError) as exc_info:
                await client.get_task("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False
        assert len(calls) == 1

    async def test_provisioning_calls(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path, json.loads(request.content or b"null")))
            path = request.url.path
            if path.endswith("/folder_template"):
                return httpx.Response(200, json={"templates": [{"id": "tpl-1", "name": "Event"}]})
            if "/folder_template/" in path:
                return httpx.Response(200, json={"folder": {"id": "f-1"}})
            if path.endswith("/space/space-1/folder") and request.method == "POST":
                return httpx.Response(200, json={"id": "f-2"})
            if path.endswith("/folder/f-2/list") and request.method == "POST":
                return httpx.Response(200, json={"id": "l-1", "name": "Pre-Event"})
            if path.endswith("/folder/f-2/list"):
                return httpx.Response(200, json={"lists": [{"id": "l-1", "name": "Pre-Event"}]})
            return httpx.Response(404)

        async with make_client(handler) as client:
            templates = await client.get_folder_templates()
            from_template = await client.create_folder_from_template("tpl-1", "Dana [03.14.25] Open House")
            manual = await client.create_folder("Dana [03.14.25] Open House")
            created = await client.create_list(manual, "Pre-Event")
            lists = await client.get_folder_lists(manual)

        assert templates == [{"id": "tpl-1", "name": "Event"}]
        assert from_template == "f-1"
        assert manual == "f-2"
        assert created.id == "l-1"
        assert [lst.name for lst in lists] == ["Pre-Event"]
        assert requests[0][:2] == ("GET", "/api/v2/team/team-1/folder_template")
        assert requests[1] == (
            "POST",
            "/api/v2/space/space-1/folder_template/tpl-1",
            {"name": "Dana [03.14.25] Open House"},
        )

    async def test_space_folders(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v2/space/space-9/folder"
            return httpx.Response(
                200,
                json={"folders": [{"id": "f1", "name": "Dana [03.14.25] Open House", "lists": [{"id": "l1", "name": "Pre"}]}, {}]},
            )

        async with make_client(handler) as client:
            folders = await client.get_space_folders("space-9")

        assert [(f.id, [lst.id for lst in f.lists]) for f in folders] == [("f1", ["l1"])]

    async def test_create_webhook(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"id": "wh-9", "webhook": {"id": "wh-9"}})

        async with make_client(handler) as client:
            webhook_id = await client.create_webhook("https://hub.test/api/webhooks/clickup/tasks")

        assert webhook_id == "wh-9"
        path, body = bodies[0]
        assert path == "/api/v2/team/team-1/webhook"
        assert body["endpoint"] == "https://hub.test/api/webhooks/clickup/tasks"
        assert body["events"] == WEBHOOK_EVENTS

    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        async with make_client(handler) as client:
            with pytest.raises(ClickUpError, match="Invalid JSON"):
                await client.get_task("t1")

    def test_requires_token(self):
        with pytest.raises(ClickUpError):
            ClickUpClient("")

    def test_factory_uses_settings(self):
        client = get_clickup_client(circuit=None)
        assert client.team_id == "team-1"
        assert client.space_id == "space-1"


class TestCircuitBreaker:
    """Tests for the circuit breaker around ClickUp calls."""

    async def test_opens_after_retryable_failures(self):
        circuit = CircuitBreaker(name="test", failure_threshold=2, recovery_timeout=60)

        async def flaky():
            raise ClickUpError(503, "unavailable")

        for _ in range(2):
            with pytest.raises(ClickUpError):
                await circuit.call(flaky)

        assert circuit.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await circuit.call(flaky)

    async def test_client_errors_do_not_open(self):
        circuit = CircuitBreaker(name="test", failure_threshold=1)

        async def not_found():
            raise ClickUpError(404, "missing")

        with pytest.raises(ClickUpError):
            await circuit.call(not_found)

        assert circuit.state == CircuitState.CLOSED
        assert circuit.failure_count == 0

    async def test_half_open_recovers(self):
        circuit = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=0, half_open_max_calls=1)

        async def flaky():
            raise httpx.ConnectError("down")

        async def healthy():
            return "ok"

        with pytest.raises(httpx.ConnectError):
            await circuit.call(flaky)
        assert circuit.state == CircuitState.OPEN

        assert await circuit.call(healthy) == "ok"
        assert circuit.state == CircuitState.CLOSED

    async def test_client_uses_circuit(self):
        circuit = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with make_client(handler, circuit=circuit, max_attempts=1) as client:
            with pytest.raises(ClickUpError):
                await client.get_task("t1")
            with pytest.raises(CircuitOpenError):
                await client.get_task("t1")

    def test_is_retryable(self):
        assert is_retryable(ClickUpError(429, "slow down"))
        assert is_retryable(ClickUpError(500, "boom"))
        assert is_retryable(httpx.ReadTimeout("timeout"))
        assert not is_retryable(ClickUpError(400, "bad"))
        assert not is_retryable(ClickUpError(None, "no id"))
        assert not is_retryable(ValueError("nope"))


class TestRateLimits:
    async def test_rate_limit_reset_is_captured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="Rate limit reached", headers={"Retry-After": "7"})

        async with make_client(handler, max_attempts=1) as client:
            with pytest.raises(ClickUpError) as exc_info:
                await client.get_task("t1")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 7.0

    def test_server_wait_is_capped(self):
        wait = RateLimitAwareWait(min_wait=1, max_wait=10)

        def state_for(error: Exception) -> MagicMock:
            retry_state = MagicMock()
            retry_state.attempt_number = 1
            retry_state.outcome.exception.return_value = error
            return retry_state

        assert wait(state_for(ClickUpError(429, "slow", retry_after=3))) == 3
        assert wait(state_for(ClickUpError(429, "slow", retry_after=120))) == 10
        assert wait(state_for(ClickUpError(503, "down"))) == 1
