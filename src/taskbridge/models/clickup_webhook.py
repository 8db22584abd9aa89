"""ClickUp webhook registration model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, func, text
from sqlmodel import Field, SQLModel

from taskbridge.models.base import TimestampMixin, generate_nanoid


class ClickUpWebhook(TimestampMixin, SQLModel, table=True):
    """A webhook subscription held with ClickUp for a list.

    ``event_id`` is null for general-purpose registrations that are not
    tied to a specific Hub event. At most one active row exists per
    ``(list_id, event_id)``.
    """

    __tablename__ = "clickup_webhooks"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    list_id: str = Field(max_length=64, index=True)
    team_id: str = Field(max_length=64)
    webhook_id: str | None = Field(default=None, max_length=64)
    event_id: str | None = Field(default=None, foreign_key="events.id", ondelete="SET NULL", max_length=21)
    active: bool = Field(default=True)
    last_sync_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


# A null event_id counts as one value, so coalesce it for uniqueness
Index(
    "clickup_webhooks_active_list_event_idx",
    ClickUpWebhook.__table__.c.list_id,
    func.coalesce(ClickUpWebhook.__table__.c.event_id, ""),
    unique=True,
    postgresql_where=text("active"),
    sqlite_where=text("active"),
)
