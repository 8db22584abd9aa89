"""WorkflowRun ledger and WorkflowRunStep models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import computed_field
from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from taskbridge.models.base import TimestampMixin, generate_nanoid, utcnow

# Error messages are truncated before storage
MAX_ERROR_LENGTH = 2000


class WorkflowStatus(str, Enum):
    """Status of a workflow run.

    queued -> running -> success | failed | skipped. Only an explicit
    enqueue moves a terminal run back to queued.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


ACTIVE_STATUSES = frozenset({WorkflowStatus.QUEUED.value, WorkflowStatus.RUNNING.value})
TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.SUCCESS.value, WorkflowStatus.FAILED.value, WorkflowStatus.SKIPPED.value}
)


class StepStatus(str, Enum):
    """Status of a single processor step."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggerSource(str, Enum):
    """What caused a run to be queued."""

    WEBHOOK = "webhook"
    MANUAL = "manual"
    CRON = "cron"


class WorkflowRun(TimestampMixin, SQLModel, table=True):
    """One ledger row per logical unit of queued work."""

    __tablename__ = "workflow_runs"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)

    workflow_name: str = Field(max_length=100, index=True)

    # Sole de-duplication mechanism: "<workflow_name>:<entity_id>"
    idempotency_key: str = Field(max_length=255, index=True, unique=True)

    triggered_by: str = Field(
        default=TriggerSource.WEBHOOK.value,
        sa_column=Column(String(20), nullable=False, default=TriggerSource.WEBHOOK.value),
    )
    status: str = Field(
        default=WorkflowStatus.QUEUED.value,
        sa_column=Column(String(20), nullable=False, default=WorkflowStatus.QUEUED.value, index=True),
    )

    input: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    output: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    finished_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class WorkflowRunStep(TimestampMixin, SQLModel, table=True):
    """Sub-step record written by a processor while handling a run."""

    __tablename__ = "workflow_run_steps"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    run_id: str = Field(foreign_key="workflow_runs.id", index=True, ondelete="CASCADE", max_length=21)
    step_name: str = Field(max_length=100)
    status: str = Field(
        default=StepStatus.RUNNING.value,
        sa_column=Column(String(20), nullable=False, default=StepStatus.RUNNING.value),
    )
    request: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    response_body: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    started_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    finished_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class WorkflowRunStepRead(SQLModel):
    """Schema for reading a run step."""

    id: str
    step_name: str
    status: str
    request: dict[str, Any] | None
    response_body: dict[str, Any] | None
    error_message: str | None
    started_at: datetime
    finished_at: datetime | None


class WorkflowRunRead(SQLModel):
    """Schema for reading a workflow run."""

    id: str
    workflow_name: str
    idempotency_key: str
    triggered_by: str
    status: str
    input: dict[str, Any] | None
    output: dict[str, Any] | None
    error_message: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def is_active(self) -> bool:
        """Whether the run is queued or in flight."""
        return self.status in ACTIVE_STATUSES

    @computed_field
    @property
    def can_requeue(self) -> bool:
        """Whether a new trigger would put this run back in the queue."""
        return self.status in TERMINAL_STATUSES


class WorkflowRunStatus(WorkflowRunRead):
    """Run plus its ordered steps, as returned to polling clients."""

    steps: list[WorkflowRunStepRead] = []

    @computed_field
    @property
    def current_step(self) -> str | None:
        """Name of the most recent step, if any."""
        return self.steps[-1].step_name if self.steps else None
