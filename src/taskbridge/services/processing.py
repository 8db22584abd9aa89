"""Processor registry and dispatcher for queued workflow runs.

A processor is an async callable ``(session, run, steps) -> output``. The
dispatcher claims a queued run, calls its processor and moves the run to
a terminal state:

- returned dict (or None): success with that output
- raised SkipRun: skipped
- raised anything else: a failed ``error`` step and a failed run

Artifact generation (thumbnails, copy) runs outside this service; only
workflows registered here are drained by ``process_queued_runs``.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskbridge.models.workflow_run import StepStatus, WorkflowRun, WorkflowRunStep
from taskbridge.services import ledger
from taskbridge.services.clickup import get_clickup_client
from taskbridge.services.sync import agent_directory, event_list_targets, get_event, reconcile_list

logger = logging.getLogger(__name__)

SYNC_EVENT_TASKS = "sync-event-tasks"

T = TypeVar("T")


class SkipRun(Exception):
    """Raised by a processor when there is nothing to do for a run."""

    pass


class StepTracker:
    """Records processor steps for one run.

    Each step write is committed on its own so earlier steps survive a
    later failure. Write failures are logged and swallowed; a broken step
    log never fails the run itself.
    """

    def __init__(self, session: AsyncSession, run_id: str):
        self.session = session
        self.run_id = run_id

    async def _write(self, label: str, func: Callable[[], Awaitable[T]]) -> T | None:
        try:
            async with self.session.begin_nested():
                result = await func()
            await self.session.commit()
            return result
        except SQLAlchemyError as e:
            logger.warning(f"Could not record step '{label}' for run {self.run_id}: {e}")
            return None

    async def _finish(
        self,
        step: WorkflowRunStep | None,
        status: StepStatus,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        if step is None:
            return
        await self._write(
            step.step_name,
            lambda: ledger.finish_step(self.session, step, status, response=response, error=error),
        )

    @asynccontextmanager
    async def track(
        self,
        name: str,
        request: dict[str, Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Record a step around a block of work.

        The yielded dict becomes the step's response body. An exception
        marks the step failed and propagates.
        """
        step = await self._write(
            name, lambda: ledger.start_step(self.session, self.run_id, name, request)
        )
        response: dict[str, Any] = {}
        try:
            yield response
        except SkipRun as e:
            await self._finish(step, StepStatus.SKIPPED, response or None, str(e) or None)
            raise
        except Exception as e:
            await self._finish(step, StepStatus.FAILED, response or None, str(e))
            raise
        await self._finish(step, StepStatus.SUCCESS, response or None)

    async def record(
        self,
        name: str,
        status: StepStatus,
        *,
        request: dict[str, Any] | None = None,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Record a step that has already finished."""
        await self._write(
            name,
            lambda: ledger.record_step(
                self.session,
                self.run_id,
                name,
                status,
                request=request,
                response=response,
                error=error,
            ),
        )


Processor = Callable[[AsyncSession, WorkflowRun, StepTracker], Awaitable[dict[str, Any] | None]]

_processors: dict[str, Processor] = {}


def register_processor(workflow_name: str) -> Callable[[Processor], Processor]:
    """Decorator registering the processor for a workflow name."""

    def decorator(func: Processor) -> Processor:
        _processors[workflow_name] = func
        return func

    return decorator


def get_processor(workflow_name: str) -> Processor | None:
    return _processors.get(workflow_name)


def registered_workflows() -> list[str]:
    return sorted(_processors)


@dataclass
class ProcessSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "remaining": self.remaining,
        }


async def process_run(session: AsyncSession, run_id: str) -> str | None:
    """Claim and execute one run.

    Returns:
        The run's terminal status, or None if another processor claimed it
        first or no processor is registered for it
    """
    run = await ledger.get_workflow_run(session, run_id)
    if run is None:
        return None
    processor = get_processor(run.workflow_name)
    if processor is None:
        logger.debug(f"No processor registered for {run.workflow_name}, leaving run {run_id}")
        return None

    if not await ledger.claim_workflow_run(session, run_id):
        await session.rollback()
        logger.info(f"Run {run_id} already claimed by another processor")
        return None
    await session.commit()
    await session.refresh(run)

    steps = StepTracker(session, run_id)
    try:
        output = await processor(session, run, steps)
    except SkipRun as e:
        await ledger.skip_workflow_run(session, run_id, str(e) or None)
        await session.commit()
        logger.info(f"Run {run_id} skipped: {e}")
        return "skipped"
    except Exception as e:
        logger.exception(f"Run {run_id} ({run.workflow_name}) failed")
        await session.rollback()
        message = str(e) or e.__class__.__name__
        await steps.record("error", StepStatus.FAILED, error=message)
        await ledger.fail_workflow_run(session, run_id, message)
        await session.commit()
        return "failed"

    await ledger.complete_workflow_run(session, run_id, output)
    await session.commit()
    logger.info(f"Run {run_id} ({run.workflow_name}) succeeded")
    return "success"


async def process_queued_runs(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    workflow_name: str | None = None,
    limit: int = 5,
) -> ProcessSummary:
    """Drain up to ``limit`` queued runs that have a registered processor.

    Each run gets its own session so one failure cannot poison the rest.
    """
    names = [workflow_name] if workflow_name else registered_workflows()
    names = [name for name in names if get_processor(name)]
    summary = ProcessSummary()
    if not names:
        return summary

    async with session_factory() as session:
        queued = await ledger.list_queued_runs(session, names, limit=limit)
        run_ids = [run.id for run in queued]

    for run_id in run_ids:
        async with session_factory() as session:
            status = await process_run(session, run_id)
        if status is None:
            continue
        summary.processed += 1
        if status == "success":
            summary.succeeded += 1
        elif status == "skipped":
            summary.skipped += 1
        else:
            summary.failed += 1

    async with session_factory() as session:
        summary.remaining = await ledger.count_queued_runs(session, names)

    if summary.processed:
        logger.info(
            f"Processed {summary.processed} runs ({summary.succeeded} ok, "
            f"{summary.failed} failed, {summary.skipped} skipped), {summary.remaining} remaining"
        )
    return summary


@register_processor(SYNC_EVENT_TASKS)
async def sync_event_tasks_processor(
    session: AsyncSession,
    run: WorkflowRun,
    steps: StepTracker,
) -> dict[str, Any]:
    """Reconcile every list linked to the event named in the run input."""
    event_id = (run.input or {}).get("event_id")
    if not event_id:
        raise SkipRun("Run input has no event_id")

    event = await get_event(session, event_id)
    if event is None:
        raise SkipRun(f"Event {event_id} not found")
    targets = event_list_targets(event)
    if not targets:
        raise SkipRun(f"Event {event_id} has no linked ClickUp lists")

    tag = (run.input or {}).get("tag")
    agents_by_email = agent_directory()
    totals = {"lists": 0, "fetched": 0, "included": 0, "inserted": 0, "updated": 0}
    async with get_clickup_client() as client:
        for list_id, phase in targets:
            async with steps.track(
                f"reconcile:{phase.value if phase else 'list'}", request={"list_id": list_id}
            ) as response:
                result = await reconcile_list(
                    session,
                    client,
                    event.id,
                    list_id,
                    tag=tag,
                    phase=phase,
                    agent_id=event.agent_id,
                    agents_by_email=agents_by_email,
                )
                response.update(
                    fetched=result.fetched,
                    included=result.included,
                    inserted=result.inserted,
                    updated=result.updated,
                )
            totals["lists"] += 1
            for key in ("fetched", "included", "inserted", "updated"):
                totals[key] += response[key]
    return totals
