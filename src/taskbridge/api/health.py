"""Health and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from taskbridge.api.deps import SessionDep
from taskbridge.config import settings
from taskbridge.services.ledger import count_queued_runs
from taskbridge.tasks.queue import queue

logger = logging.getLogger(__name__)

router = APIRouter()


async def _database_error(session: AsyncSession) -> str | None:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database check failed: {e!r}")
        return str(e)
    return None


async def _redis_error() -> str | None:
    redis = getattr(queue, "redis", None)
    if redis is None:
        return "Redis client not initialized"
    try:
        await redis.ping()
    except Exception as e:
        logger.error(f"Redis check failed: {e!r}")
        return str(e)
    return None


@router.get("")
async def health_check():
    """Liveness: the process is up."""
    return {"status": "ok"}


@router.get("/db")
async def health_check_db(session: SessionDep):
    if await _database_error(session):
        return JSONResponse(status_code=503, content={"status": "error", "database": "disconnected"})
    return {"status": "ok", "database": "connected"}


@router.get("/ready")
async def readiness_check(session: SessionDep):
    """Readiness for load balancers.

    503 when the database or Redis is unreachable. Missing ClickUp
    credentials only degrade the status: webhooks can still be queued.
    The queued-run backlog is reported so a stalled processor is visible.
    """
    errors = {}
    if db_error := await _database_error(session):
        errors["database"] = db_error
    if redis_error := await _redis_error():
        errors["redis"] = redis_error

    clickup_ok = bool(settings.clickup_api_token and settings.clickup_team_id)
    body = {
        "status": "ok" if clickup_ok and not errors else "degraded",
        "database": "disconnected" if "database" in errors else "connected",
        "redis": "disconnected" if "redis" in errors else "connected",
        "clickup_configured": clickup_ok,
        "queued_runs": None if "database" in errors else await count_queued_runs(session),
    }
    if errors:
        return JSONResponse(status_code=503, content=body)
    return body
