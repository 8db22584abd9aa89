"""Inbound ClickUp webhook endpoints.

ClickUp retries any non-2xx delivery, so everything that is not a bad
signature or a wrong method is acknowledged with a 200, including
payloads that cannot be interpreted.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from taskbridge.api.deps import SessionDep
from taskbridge.config import settings
from taskbridge.models.workflow_run import TriggerSource
from taskbridge.services.clickup import get_clickup_client
from taskbridge.services.ledger import enqueue_workflow_run
from taskbridge.services.payloads import extract_artifact_task_id, extract_task_event_keys
from taskbridge.services.signature import get_signature_header, verify_signature
from taskbridge.services.sync import (
    REMOTE_ERRORS,
    TaskSyncOutcome,
    find_event_for_list,
    sync_task_from_webhook,
)
from taskbridge.services.wake import wake_processor

logger = logging.getLogger(__name__)

router = APIRouter()

GENERATE_THUMBNAIL = "generate-thumbnail"
GENERATE_COPY = "generate-copy"


def _invalid_signature() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Invalid signature"})


def _parse_body(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


@router.post("/tasks")
async def clickup_task_webhook(request: Request, session: SessionDep):
    """Mirror a changed ClickUp task if it is a tagged task of a linked event."""
    body = await request.body()
    if not verify_signature(
        body, get_signature_header(request.headers), settings.clickup_webhook_secret
    ):
        logger.warning("Rejected task webhook with invalid or missing signature")
        return _invalid_signature()

    payload = _parse_body(body)
    if payload is None:
        logger.info("Task webhook body is not JSON, skipping")
        return {"ok": True, "skipped": True}
    logger.debug(f"Task webhook payload: {json.dumps(payload)[:2000]}")

    task_id, list_id = extract_task_event_keys(payload)
    if not task_id or not list_id:
        logger.info(f"Task webhook without task/list id (task={task_id}, list={list_id}), skipping")
        return {"ok": True, "skipped": True}

    try:
        # Unlinked lists are answered without ClickUp credentials
        if await find_event_for_list(session, list_id) is None:
            outcome = TaskSyncOutcome.UNMATCHED_LIST
        else:
            async with get_clickup_client() as client:
                outcome = await sync_task_from_webhook(session, client, task_id, list_id)
            await session.commit()
    except REMOTE_ERRORS as e:
        await session.rollback()
        logger.warning(f"Could not fetch ClickUp task {task_id}, skipping: {e}")
        return {"ok": True, "skipped": True}
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"Failed to store task {task_id} from webhook")
        return {"ok": False}

    if outcome is TaskSyncOutcome.UNMATCHED_LIST:
        return {"ok": True, "unmatched_list": list_id}
    if outcome is TaskSyncOutcome.IGNORED:
        return {"ok": True, "ignored": True}
    return {"ok": True}


async def _enqueue_artifact(
    workflow_name: str,
    request: Request,
    session: SessionDep,
    background_tasks: BackgroundTasks,
):
    # ClickUp Automations do not sign requests, so a missing header is accepted
    body = await request.body()
    if not verify_signature(
        body,
        get_signature_header(request.headers),
        settings.clickup_webhook_secret,
        allow_missing_header=True,
    ):
        logger.warning(f"Rejected {workflow_name} webhook with invalid signature")
        return _invalid_signature()

    task_id = extract_artifact_task_id(_parse_body(body))
    if not task_id:
        logger.info(f"{workflow_name} webhook without task id, skipping")
        return {"ok": True, "skipped": True}

    result = await enqueue_workflow_run(
        session,
        workflow_name,
        task_id,
        input_data={"task_id": task_id},
        triggered_by=TriggerSource.WEBHOOK,
    )
    await session.commit()

    if not result.queued:
        return {"ok": True, "already_processing": True}

    background_tasks.add_task(wake_processor, workflow_name)
    return {"ok": True, "queued": True, "task_id": task_id, "run_id": result.run.id}


@router.post("/generate-thumbnail")
async def generate_thumbnail_webhook(
    request: Request,
    session: SessionDep,
    background_tasks: BackgroundTasks,
):
    """Queue thumbnail generation for a ClickUp task."""
    return await _enqueue_artifact(GENERATE_THUMBNAIL, request, session, background_tasks)


@router.post("/generate-copy")
async def generate_copy_webhook(
    request: Request,
    session: SessionDep,
    background_tasks: BackgroundTasks,
):
    """Queue social copy generation for a ClickUp task."""
    return await _enqueue_artifact(GENERATE_COPY, request, session, background_tasks)


@router.api_route(
    "/{webhook_name}",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def method_not_allowed(webhook_name: str):
    return JSONResponse(status_code=405, content={"error": "Method not allowed"})
