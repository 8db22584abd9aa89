"""Idempotency ledger, run state machine and step tracking."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from taskbridge.models.base import utcnow
from taskbridge.models.workflow_run import (
    ACTIVE_STATUSES,
    MAX_ERROR_LENGTH,
    TERMINAL_STATUSES,
    StepStatus,
    TriggerSource,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)


class EnqueueOutcome(str, Enum):
    """Result of asking the ledger to queue a logical operation."""

    CREATED = "created"
    REQUEUED = "requeued"
    ALREADY_PROCESSING = "already_processing"


@dataclass
class EnqueueResult:
    """What an enqueue call did and the run it touched."""

    run: WorkflowRun
    outcome: EnqueueOutcome
    idempotency_key: str

    @property
    def queued(self) -> bool:
        """True when the run is now waiting for a processor because of this call."""
        return self.outcome is not EnqueueOutcome.ALREADY_PROCESSING


def build_idempotency_key(workflow_name: str, entity_id: str) -> str:
    """Deterministic key for one logical operation on one entity."""
    return f"{workflow_name}:{entity_id}"


def _truncate_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


async def get_workflow_run(session: AsyncSession, run_id: str) -> WorkflowRun | None:
    """Fetch a run by its ID.

    Status is always re-read; conditional updates bypass the identity map.
    """
    stmt = select(WorkflowRun).where(WorkflowRun.id == run_id).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_run_by_key(session: AsyncSession, idempotency_key: str) -> WorkflowRun | None:
    """Fetch the single run for an idempotency key, if any."""
    stmt = (
        select(WorkflowRun)
        .where(WorkflowRun.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def clear_steps(session: AsyncSession, run_id: str) -> int:
    """Delete every step recorded for a run.

    Returns:
        Number of steps removed
    """
    result = await session.execute(delete(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id))
    return result.rowcount or 0


async def _requeue_existing(
    session: AsyncSession,
    run: WorkflowRun,
    input_data: dict[str, Any] | None,
    triggered_by: str,
) -> EnqueueResult:
    """Apply the re-trigger policy to an existing ledger row.

    queued/running rows are left alone. Terminal rows are reset to queued
    with fresh input and no leftover output, error, timing or steps. The
    UPDATE is conditional on the row still being terminal so two
    concurrent re-triggers cannot both win.
    """
    if run.status in ACTIVE_STATUSES:
        logger.info(f"Run {run.id} already {run.status} for {run.idempotency_key}, skipping")
        return EnqueueResult(run, EnqueueOutcome.ALREADY_PROCESSING, run.idempotency_key)

    stmt = (
        update(WorkflowRun)
        .where(WorkflowRun.id == run.id)
        .where(WorkflowRun.status.in_(TERMINAL_STATUSES))  # type: ignore[attr-defined]
        .values(
            status=WorkflowStatus.QUEUED.value,
            input=input_data,
            output=None,
            error_message=None,
            started_at=None,
            finished_at=None,
            triggered_by=triggered_by,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.refresh(run)

    if not result.rowcount:
        logger.info(f"Run {run.id} was re-queued concurrently, now {run.status}")
        return EnqueueResult(run, EnqueueOutcome.ALREADY_PROCESSING, run.idempotency_key)

    removed = await clear_steps(session, run.id)
    logger.info(f"Re-queued run {run.id} for {run.idempotency_key} ({removed} old steps cleared)")
    return EnqueueResult(run, EnqueueOutcome.REQUEUED, run.idempotency_key)


async def enqueue_workflow_run(
    session: AsyncSession,
    workflow_name: str,
    entity_id: str,
    *,
    input_data: dict[str, Any] | None = None,
    triggered_by: TriggerSource | str = TriggerSource.WEBHOOK,
) -> EnqueueResult:
    """Create or reuse the ledger row for one logical operation.

    - No row: insert a new queued run.
    - queued/running: no-op, reported as already processing.
    - success/failed/skipped: reset to queued with the new input.

    A concurrent first insert for the same key loses on the unique
    constraint; the loser re-reads the winner's row and applies the
    existing-row policy instead of failing.

    The caller owns the transaction and must commit.

    Args:
        session: Database session
        workflow_name: Processor that handles this run (e.g. "generate-thumbnail")
        entity_id: Triggering entity, usually a ClickUp task ID
        input_data: Payload needed to (re)execute the job
        triggered_by: webhook, manual or cron

    Returns:
        EnqueueResult describing the outcome
    """
    key = build_idempotency_key(workflow_name, entity_id)
    source = TriggerSource(triggered_by).value

    existing = await get_run_by_key(session, key)
    if existing:
        return await _requeue_existing(session, existing, input_data, source)

    run = WorkflowRun(
        workflow_name=workflow_name,
        idempotency_key=key,
        triggered_by=source,
        status=WorkflowStatus.QUEUED.value,
        input=input_data,
    )
    try:
        async with session.begin_nested():
            session.add(run)
            await session.flush()
    except IntegrityError:
        logger.info(f"Concurrent insert for {key}, treating as existing run")
        existing = await get_run_by_key(session, key)
        if existing is None:
            raise
        return await _requeue_existing(session, existing, input_data, source)

    logger.info(f"Queued new {workflow_name} run {run.id} for {entity_id}")
    return EnqueueResult(run, EnqueueOutcome.CREATED, key)


async def force_requeue(
    session: AsyncSession,
    run_id: str,
    *,
    input_data: dict[str, Any] | None = None,
    triggered_by: TriggerSource | str = TriggerSource.MANUAL,
) -> EnqueueResult | None:
    """Manually re-trigger an existing run, keeping its input unless given.

    Returns:
        EnqueueResult, or None if the run does not exist
    """
    run = await get_workflow_run(session, run_id)
    if not run:
        return None
    payload = input_data if input_data is not None else run.input
    return await _requeue_existing(session, run, payload, TriggerSource(triggered_by).value)


async def claim_workflow_run(session: AsyncSession, run_id: str) -> bool:
    """Move a run from queued to running.

    Conditional on the current status so that only one of several
    concurrent processors wins.

    Returns:
        True if this caller now owns the run
    """
    stmt = (
        update(WorkflowRun)
        .where(WorkflowRun.id == run_id)
        .where(WorkflowRun.status == WorkflowStatus.QUEUED.value)
        .values(
            status=WorkflowStatus.RUNNING.value,
            started_at=utcnow(),
            error_message=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return bool(result.rowcount)


async def _finish_run(
    session: AsyncSession,
    run_id: str,
    status: WorkflowStatus,
    *,
    output: dict[str, Any] | None = None,
    error: str | None = None,
) -> bool:
    stmt = (
        update(WorkflowRun)
        .where(WorkflowRun.id == run_id)
        .where(WorkflowRun.status == WorkflowStatus.RUNNING.value)
        .values(
            status=status.value,
            output=output,
            error_message=_truncate_error(error),
            finished_at=utcnow(),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if not result.rowcount:
        logger.warning(f"Run {run_id} was not running, cannot mark {status.value}")
        return False
    return True


async def complete_workflow_run(
    session: AsyncSession,
    run_id: str,
    output: dict[str, Any] | None = None,
) -> bool:
    """Mark a running run as succeeded."""
    return await _finish_run(session, run_id, WorkflowStatus.SUCCESS, output=output)


async def fail_workflow_run(session: AsyncSession, run_id: str, error: str) -> bool:
    """Mark a running run as failed with an error message."""
    return await _finish_run(session, run_id, WorkflowStatus.FAILED, error=error)


async def skip_workflow_run(session: AsyncSession, run_id: str, reason: str | None = None) -> bool:
    """Mark a running run as skipped (nothing to do)."""
    output = {"reason": reason} if reason else None
    return await _finish_run(session, run_id, WorkflowStatus.SKIPPED, output=output)


async def list_queued_runs(
    session: AsyncSession,
    workflow_names: Sequence[str] | None = None,
    limit: int = 5,
) -> list[WorkflowRun]:
    """Queued runs, oldest first, optionally only for some workflows."""
    stmt = select(WorkflowRun).where(WorkflowRun.status == WorkflowStatus.QUEUED.value)
    if workflow_names is not None:
        stmt = stmt.where(WorkflowRun.workflow_name.in_(workflow_names))  # type: ignore[attr-defined]
    stmt = stmt.order_by(WorkflowRun.created_at.asc()).limit(limit)  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_queued_runs(
    session: AsyncSession,
    workflow_names: Sequence[str] | None = None,
) -> int:
    """Number of runs waiting for a processor."""
    stmt = select(func.count()).select_from(WorkflowRun).where(
        WorkflowRun.status == WorkflowStatus.QUEUED.value
    )
    if workflow_names is not None:
        stmt = stmt.where(WorkflowRun.workflow_name.in_(workflow_names))  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    return int(result.scalar_one())


# Step tracking


async def start_step(
    session: AsyncSession,
    run_id: str,
    step_name: str,
    request: dict[str, Any] | None = None,
) -> WorkflowRunStep:
    """Record that a processor step has begun."""
    step = WorkflowRunStep(
        run_id=run_id,
        step_name=step_name,
        status=StepStatus.RUNNING.value,
        request=request,
    )
    session.add(step)
    await session.flush()
    return step


async def finish_step(
    session: AsyncSession,
    step: WorkflowRunStep,
    status: StepStatus = StepStatus.SUCCESS,
    *,
    response: dict[str, Any] | None = None,
    error: str | None = None,
) -> WorkflowRunStep:
    """Close out a step with its final status."""
    step.status = status.value
    step.response_body = response
    step.error_message = _truncate_error(error)
    step.finished_at = utcnow()
    await session.flush()
    return step


async def record_step(
    session: AsyncSession,
    run_id: str,
    step_name: str,
    status: StepStatus,
    *,
    request: dict[str, Any] | None = None,
    response: dict[str, Any] | None = None,
    error: str | None = None,
) -> WorkflowRunStep:
    """Record a step that started and finished in one go."""
    step = await start_step(session, run_id, step_name, request)
    return await finish_step(session, step, status, response=response, error=error)


async def list_steps(session: AsyncSession, run_id: str) -> list[WorkflowRunStep]:
    """Steps for a run in the order they started."""
    stmt = (
        select(WorkflowRunStep)
        .where(WorkflowRunStep.run_id == run_id)
        .order_by(WorkflowRunStep.started_at.asc(), WorkflowRunStep.created_at.asc())  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_run_with_steps(
    session: AsyncSession,
    run_id: str,
) -> tuple[WorkflowRun, list[WorkflowRunStep]] | None:
    """Latest ledger state for a run plus its ordered steps.

    Used by polling clients; nothing is cached.
    """
    run = await get_workflow_run(session, run_id)
    if not run:
        return None
    await session.refresh(run)
    return run, await list_steps(session, run.id)
