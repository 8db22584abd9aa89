"""Hub event model with its linked ClickUp folder and lists."""

from datetime import date

from sqlmodel import Field, SQLModel

from taskbridge.models.base import TimestampMixin, generate_nanoid


class Event(TimestampMixin, SQLModel, table=True):
    """A Hub event and the remote ClickUp containers that track it.

    The three phase list IDs are written once by folder provisioning (or
    folder linking) and read by every later sync pass.
    """

    __tablename__ = "events"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    title: str = Field(max_length=255)
    event_date: date = Field(index=True)
    agent_id: str | None = Field(default=None, max_length=64, index=True)
    agent_name: str | None = Field(default=None, max_length=255)

    clickup_folder_id: str | None = Field(default=None, max_length=64)
    # Single-list link set by register-and-sync
    clickup_list_id: str | None = Field(default=None, max_length=64, index=True)
    clickup_pre_event_list_id: str | None = Field(default=None, max_length=64, index=True)
    clickup_event_day_list_id: str | None = Field(default=None, max_length=64, index=True)
    clickup_post_event_list_id: str | None = Field(default=None, max_length=64, index=True)

    @property
    def agent_first_name(self) -> str | None:
        if not self.agent_name:
            return None
        parts = self.agent_name.split()
        return parts[0] if parts else None


class EventRead(SQLModel):
    """Schema for reading an event's ClickUp linkage."""

    id: str
    title: str
    event_date: date
    agent_id: str | None
    agent_name: str | None
    clickup_folder_id: str | None
    clickup_list_id: str | None
    clickup_pre_event_list_id: str | None
    clickup_event_day_list_id: str | None
    clickup_post_event_list_id: str | None
