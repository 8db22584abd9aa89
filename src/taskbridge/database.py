"""Database engine and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskbridge.config import settings


def _engine_kwargs(url: str) -> dict[str, Any]:
    """Pool options for the configured driver (SQLite has no sized pool)."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session."""
    async with async_session_factory() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context manager for workers and CLI commands."""
    async with async_session_factory() as session:
        yield session


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()


def upsert_insert(session: AsyncSession, table: Any) -> Any:
    """Return a dialect-specific INSERT that supports ON CONFLICT clauses.

    PostgreSQL in production, SQLite in tests; both expose
    ``on_conflict_do_update`` / ``on_conflict_do_nothing``.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)
