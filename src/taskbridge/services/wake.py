"""Best-effort wake call to the run processor."""

import logging

import httpx

from taskbridge.config import settings
from taskbridge.models.workflow_run import TriggerSource

logger = logging.getLogger(__name__)


async def wake_processor(
    workflow_name: str | None = None,
    *,
    url: str | None = None,
    token: str | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Ask the processor endpoint to drain queued runs.

    Fire-and-forget: the response body is ignored and every failure is
    logged and swallowed. The periodic sweep picks up anything a failed
    wake left behind.

    Returns:
        True if the processor acknowledged with a 2xx
    """
    target = url or settings.processor_url
    bearer = token or settings.internal_api_token
    try:
        async with httpx.AsyncClient(
            timeout=timeout or settings.wake_timeout_seconds, transport=transport
        ) as client:
            response = await client.post(
                target,
                headers={"Authorization": f"Bearer {bearer}"},
                json={"trigger": TriggerSource.WEBHOOK.value, "workflow_name": workflow_name},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Processor wake call to {target} failed: {e!r}")
        return False

    if response.is_error:
        logger.warning(f"Processor wake call to {target} returned {response.status_code}")
        return False
    return True
