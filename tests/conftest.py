"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "test"
os.environ["INTERNAL_API_TOKEN"] = "test-internal-token"
os.environ["CLICKUP_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["CLICKUP_API_TOKEN"] = "test-clickup-token"
os.environ["CLICKUP_TEAM_ID"] = "team-1"
os.environ["CLICKUP_SPACE_ID"] = "space-1"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from taskbridge.api.deps import get_clickup, get_session_factory
from taskbridge.config import settings
from taskbridge.database import get_session
from taskbridge.main import app
from taskbridge.models import Event
from tests.factories import FakeClickUp


@pytest.fixture(autouse=True)
def mock_queue():
    """Mock the SAQ queue to avoid Redis connections in tests."""
    mock_job = MagicMock()
    mock_job.id = "test-job-id"
    mock_job.key = "test-job-key"

    with patch("taskbridge.tasks.queue.queue.enqueue", new_callable=AsyncMock) as mock_enqueue:
        mock_enqueue.return_value = mock_job
        yield mock_enqueue


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        settings.database_url_test,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINTs; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Test database session.

    All sessions share one in-memory connection, so commit before handing
    control to code that opens its own session from ``session_factory``.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_clickup() -> FakeClickUp:
    return FakeClickUp()


@pytest.fixture
async def client(
    session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    fake_clickup: FakeClickUp,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_session():
        yield session

    async def override_get_clickup():
        yield fake_clickup

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clickup] = override_get_clickup

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers() -> dict[str, str]:
    """Authorization headers for internal endpoints."""
    return {"Authorization": f"Bearer {settings.internal_api_token}"}


@pytest.fixture
async def event_with_lists(session: AsyncSession) -> Event:
    """An upcoming event with its three phase lists linked."""
    event = Event(
        title="Spring Open House",
        event_date=date.today() + timedelta(days=10),
        agent_id="agent-1",
        agent_name="Dana Whitfield",
        clickup_folder_id="folder-1",
        clickup_pre_event_list_id="list-pre",
        clickup_event_day_list_id="list-day",
        clickup_post_event_list_id="list-post",
    )
    session.add(event)
    await session.commit()
    return event


@pytest.fixture
async def bare_event(session: AsyncSession) -> Event:
    """An upcoming event with nothing linked in ClickUp yet."""
    event = Event(
        title="Lakeside Listing Launch",
        event_date=date.today() + timedelta(days=3),
        agent_id="agent-2",
        agent_name="Morgan Lee",
    )
    session.add(event)
    await session.commit()
    return event
