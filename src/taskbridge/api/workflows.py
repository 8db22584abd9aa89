"""Workflow run status polling and administration endpoints."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlmodel import select

from taskbridge.api.deps import InternalAuth, SessionDep, SessionFactoryDep
from taskbridge.config import settings
from taskbridge.models import TriggerSource, WorkflowRun, WorkflowStatus
from taskbridge.models.workflow_run import (
    WorkflowRunRead,
    WorkflowRunStatus,
    WorkflowRunStepRead,
)
from taskbridge.services.ledger import (
    EnqueueResult,
    enqueue_workflow_run,
    force_requeue,
    get_run_with_steps,
)
from taskbridge.services.processing import get_processor, process_queued_runs
from taskbridge.services.wake import wake_processor
from taskbridge.tasks import queue
from taskbridge.tasks.queue import PROCESS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[InternalAuth])


async def dispatch_run(workflow_name: str, background_tasks: BackgroundTasks) -> None:
    """Get a freshly queued run picked up.

    Workflows with an in-process processor are drained by the worker;
    anything else is left to the external processor behind the wake call.
    The run is already committed as queued, so a Redis outage only delays
    it until the next scheduled sweep.
    """
    if get_processor(workflow_name):
        try:
            await queue.enqueue(
                "process_queued_workflows",
                workflow_name=workflow_name,
                timeout=PROCESS_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Could not queue {workflow_name} processing, the sweep will pick it up: {e!r}")
    else:
        background_tasks.add_task(wake_processor, workflow_name)


class EnqueueResponse(BaseModel):
    """Outcome of a manual trigger or re-queue."""

    run_id: str
    idempotency_key: str
    outcome: str
    status: str
    queued: bool

    @classmethod
    def from_result(cls, result: EnqueueResult) -> "EnqueueResponse":
        return cls(
            run_id=result.run.id,
            idempotency_key=result.idempotency_key,
            outcome=result.outcome.value,
            status=result.run.status,
            queued=result.queued,
        )


class TriggerRequest(BaseModel):
    workflow_name: str = Field(min_length=1, max_length=100)
    entity_id: str = Field(min_length=1, max_length=150)
    input: dict[str, Any] | None = None


class ProcessRequest(BaseModel):
    trigger: str | None = None
    workflow_name: str | None = None
    limit: int | None = Field(default=None, ge=1, le=100)


class ProcessResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
    remaining: int


@router.get("", response_model=list[WorkflowRunRead])
async def list_workflows(
    session: SessionDep,
    workflow_name: Annotated[str | None, Query(alias="workflowName")] = None,
    status_filter: Annotated[WorkflowStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """List workflow runs, newest first.

    Query parameters:
        workflowName: Filter by workflow name
        status: Filter by status
        limit: Maximum number of results (default 20, max 100)
        offset: Offset for pagination
    """
    stmt = select(WorkflowRun)
    if workflow_name:
        stmt = stmt.where(WorkflowRun.workflow_name == workflow_name)
    if status_filter:
        stmt = stmt.where(WorkflowRun.status == status_filter.value)

    stmt = stmt.order_by(WorkflowRun.created_at.desc())  # type: ignore[attr-defined]
    stmt = stmt.offset(offset).limit(limit)

    result = await session.execute(stmt)
    return [WorkflowRunRead.model_validate(run) for run in result.scalars().all()]


@router.get("/{run_id}", response_model=WorkflowRunStatus)
async def get_workflow(run_id: str, session: SessionDep):
    """Current state of a run and its steps, for progress polling."""
    found = await get_run_with_steps(session, run_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow run '{run_id}' not found",
        )

    run, steps = found
    return WorkflowRunStatus(
        **WorkflowRunRead.model_validate(run).model_dump(exclude={"is_active", "can_requeue"}),
        steps=[WorkflowRunStepRead.model_validate(step) for step in steps],
    )


@router.post("/{run_id}/requeue", response_model=EnqueueResponse)
async def requeue_workflow(
    run_id: str,
    session: SessionDep,
    background_tasks: BackgroundTasks,
):
    """Put a finished run back in the queue with its previous input.

    Runs that are still queued or running are left alone.
    """
    result = await force_requeue(session, run_id, triggered_by=TriggerSource.MANUAL)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow run '{run_id}' not found",
        )
    await session.commit()

    if result.queued:
        await dispatch_run(result.run.workflow_name, background_tasks)
    return EnqueueResponse.from_result(result)


@router.post("/trigger", response_model=EnqueueResponse)
async def trigger_workflow(
    request: TriggerRequest,
    session: SessionDep,
    background_tasks: BackgroundTasks,
):
    """Manually enqueue a workflow for an entity."""
    result = await enqueue_workflow_run(
        session,
        request.workflow_name,
        request.entity_id,
        input_data=request.input,
        triggered_by=TriggerSource.MANUAL,
    )
    await session.commit()

    if result.queued:
        await dispatch_run(request.workflow_name, background_tasks)
    return EnqueueResponse.from_result(result)


@router.post("/process", response_model=ProcessResponse)
async def process_workflows(
    session_factory: SessionFactoryDep,
    request: ProcessRequest | None = None,
):
    """Drain queued runs that have an in-process processor.

    This is the target of the wake call made after a webhook enqueues work.
    """
    request = request or ProcessRequest()
    summary = await process_queued_runs(
        session_factory,
        workflow_name=request.workflow_name,
        limit=request.limit or settings.process_batch_size,
    )
    return ProcessResponse(**summary.to_dict())
