"""SQLModel database models."""

from taskbridge.models.base import TimestampMixin
from taskbridge.models.clickup_webhook import ClickUpWebhook
from taskbridge.models.event import Event
from taskbridge.models.synced_task import EventPhase, SyncedTask
from taskbridge.models.workflow_run import (
    StepStatus,
    TriggerSource,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowStatus,
)

__all__ = [
    "ClickUpWebhook",
    "Event",
    "EventPhase",
    "StepStatus",
    "SyncedTask",
    "TimestampMixin",
    "TriggerSource",
    "WorkflowRun",
    "WorkflowRunStep",
    "WorkflowStatus",
]
