"""Local mirror of ClickUp tasks attached to Hub events."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from taskbridge.models.base import generate_nanoid, utcnow


class EventPhase(str, Enum):
    """Which phase list of an event folder a task came from."""

    PRE_EVENT = "pre_event"
    EVENT_DAY = "event_day"
    POST_EVENT = "post_event"


class SyncedTask(SQLModel, table=True):
    """A ClickUp task mirrored locally.

    Always upserted on ``clickup_task_id``; never duplicated.
    """

    __tablename__ = "clickup_tasks"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    clickup_task_id: str = Field(max_length=64, unique=True, index=True)
    event_id: str = Field(foreign_key="events.id", index=True, ondelete="CASCADE", max_length=21)
    task_name: str = Field(max_length=500)
    status: str | None = Field(default=None, max_length=100)
    due_date: date | None = Field(default=None)
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    responsible_person: str | None = Field(default=None, max_length=500)
    phase: str | None = Field(default=None, max_length=20)
    agent_id: str | None = Field(default=None, max_length=64)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class SyncedTaskRead(SQLModel):
    """Schema for reading a synced task."""

    id: str
    clickup_task_id: str
    event_id: str
    task_name: str
    status: str | None
    due_date: date | None
    completed_at: datetime | None
    responsible_person: str | None
    phase: str | None
    agent_id: str | None
    updated_at: datetime
