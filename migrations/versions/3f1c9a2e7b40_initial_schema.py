"""initial_schema

Events, the workflow run ledger and the ClickUp task mirror.

Revision ID: 3f1c9a2e7b40
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2e7b40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False, index=True),
        sa.Column("agent_id", sa.String(64), nullable=True, index=True),
        sa.Column("agent_name", sa.String(255), nullable=True),
        sa.Column("clickup_folder_id", sa.String(64), nullable=True),
        sa.Column("clickup_list_id", sa.String(64), nullable=True, index=True),
        sa.Column("clickup_pre_event_list_id", sa.String(64), nullable=True, index=True),
        sa.Column("clickup_event_day_list_id", sa.String(64), nullable=True, index=True),
        sa.Column("clickup_post_event_list_id", sa.String(64), nullable=True, index=True),
        *_timestamps(),
    )

    op.create_table(
        "workflow_runs",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("workflow_name", sa.String(100), nullable=False, index=True),
        sa.Column("idempotency_key", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("triggered_by", sa.String(20), nullable=False, server_default="webhook"),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("input", JSONB(), nullable=True),
        sa.Column("output", JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_workflow_runs_status", "workflow_runs", ["status"])

    op.create_table(
        "workflow_run_steps",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column(
            "run_id",
            sa.VARCHAR(21),
            sa.ForeignKey("workflow_runs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("step_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("request", JSONB(), nullable=True),
        sa.Column("response_body", JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "clickup_webhooks",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("list_id", sa.String(64), nullable=False, index=True),
        sa.Column("team_id", sa.String(64), nullable=False),
        sa.Column("webhook_id", sa.String(64), nullable=True),
        sa.Column(
            "event_id",
            sa.VARCHAR(21),
            sa.ForeignKey("events.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    # One active registration per (list, event); a null event counts as one value
    op.create_index(
        "clickup_webhooks_active_list_event_idx",
        "clickup_webhooks",
        ["list_id", sa.text("coalesce(event_id, '')")],
        unique=True,
        postgresql_where=sa.text("active"),
    )

    op.create_table(
        "clickup_tasks",
        sa.Column("id", sa.VARCHAR(21), primary_key=True),
        sa.Column("clickup_task_id", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column(
            "event_id",
            sa.VARCHAR(21),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("task_name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(100), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responsible_person", sa.String(500), nullable=True),
        sa.Column("phase", sa.String(20), nullable=True),
        sa.Column("agent_id", sa.String(64), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("clickup_tasks")
    op.drop_index("clickup_webhooks_active_list_event_idx", table_name="clickup_webhooks")
    op.drop_table("clickup_webhooks")
    op.drop_table("workflow_run_steps")
    op.drop_index("ix_workflow_runs_status", table_name="workflow_runs")
    op.drop_table("workflow_runs")
    op.drop_table("events")
