"""Periodic ClickUp task reconciliation job."""

import logging
from dataclasses import asdict
from typing import Any

from taskbridge.database import async_session_factory
from taskbridge.services.clickup import get_clickup_client
from taskbridge.services.sync import sync_all_events

logger = logging.getLogger(__name__)


async def sync_event_tasks(_ctx: dict[str, Any], tag: str | None = None) -> dict[str, Any]:
    """Reconcile tagged tasks for every event with linked ClickUp lists."""
    async with get_clickup_client() as client:
        summary = await sync_all_events(async_session_factory, client, tag=tag)

    if summary.errors:
        logger.warning(f"Task sync finished with {len(summary.errors)} errors")
    return asdict(summary)
