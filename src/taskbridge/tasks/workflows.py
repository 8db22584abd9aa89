"""Background jobs that drain the workflow run queue."""

import logging
from typing import Any

from taskbridge.config import settings
from taskbridge.database import async_session_factory
from taskbridge.services.ledger import count_queued_runs
from taskbridge.services.processing import process_queued_runs, registered_workflows
from taskbridge.services.wake import wake_processor

logger = logging.getLogger(__name__)


async def process_queued_workflows(
    _ctx: dict[str, Any],
    workflow_name: str | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Drain queued runs that have an in-process processor.

    Args:
        _ctx: SAQ context
        workflow_name: Only drain this workflow
        limit: Maximum runs to claim, defaults to PROCESS_BATCH_SIZE

    Returns:
        Counts of processed, failed, skipped and remaining runs
    """
    summary = await process_queued_runs(
        async_session_factory,
        workflow_name=workflow_name,
        limit=limit or settings.process_batch_size,
    )
    return summary.to_dict()


async def sweep_queued_runs(ctx: dict[str, Any]) -> dict[str, Any]:
    """Periodic backstop for runs whose wake call was lost.

    Drains in-process workflows, then wakes the external processor if
    runs for other workflows are still waiting.
    """
    result = await process_queued_workflows(ctx)

    local = registered_workflows()
    async with async_session_factory() as session:
        waiting = await count_queued_runs(session)
        waiting_local = await count_queued_runs(session, local) if local else 0

    external = waiting - waiting_local
    woke = False
    if external > 0:
        logger.info(f"{external} queued runs waiting on the external processor, waking it")
        woke = await wake_processor()

    return {**result, "external_waiting": external, "woke_processor": woke}
