"""create chats, messages, usage, invoice and scheduler tables

Revision ID: 4f2a9c1e7b30
Revises: 
Create Date: 2026-10-19 09:12:44.318204

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_task_state = sa.Enum("PENDING", "FIRED", "CANCELLED", name="taskstate")
_invoice_status = sa.Enum("PENDING", "PAID", "FAILED", name="invoicestatus")
_aggregation_status = sa.Enum("RUNNING", "COMPLETED", name="aggregationstatus")
_message_role = sa.Enum("SYSTEM", "USER", "ASSISTANT", name="messagerole")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("function", sa.String(100), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("state", _task_state, nullable=False),
        sa.Column("fired_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_scheduled_tasks_run_at", "scheduled_tasks", ["run_at"])
    op.create_index("ix_scheduled_tasks_state", "scheduled_tasks", ["state"])

    op.create_table(
        "chats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("message_count", sa.Integer(), nullable=False),
        sa.Column(
            "update_title_task_id",
            sa.Uuid(),
            sa.ForeignKey("scheduled_tasks.id"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_chats_user_id", "chats", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("chat_id", sa.Uuid(), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("role", _message_role, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("agent_name", sa.String(100), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False),
        sa.Column("completion_tokens", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_messages_chat_id", "messages", ["chat_id"])

    op.create_table(
        "usage_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("chat_id", sa.Uuid(), sa.ForeignKey("chats.id"), nullable=True),
        sa.Column("agent_name", sa.String(100), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False),
        sa.Column("completion_tokens", sa.Integer(), nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("cached_prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("billing_period", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_usage_events_user_id", "usage_events", ["user_id"])
    op.create_index("ix_usage_events_chat_id", "usage_events", ["chat_id"])
    op.create_index(
        "ix_usage_events_period_user", "usage_events", ["billing_period", "user_id", "id"]
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("billing_period", sa.DateTime(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("status", _invoice_status, nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False),
        sa.Column("completion_tokens", sa.Integer(), nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("cached_prompt_tokens", sa.Integer(), nullable=False),
        sa.Column("line_items", sa.Text(), nullable=False, server_default="[]"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "billing_period", name="uq_invoices_user_period"),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_billing_period", "invoices", ["billing_period"])

    op.create_table(
        "aggregation_checkpoints",
        sa.Column("billing_period", sa.DateTime(), primary_key=True),
        sa.Column("status", _aggregation_status, nullable=False),
        sa.Column("cursor", sa.String(100), nullable=True),
        sa.Column("in_progress", sa.Text(), nullable=True),
        sa.Column("pages_processed", sa.Integer(), nullable=False),
        sa.Column("invoices_created", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("aggregation_checkpoints")
    op.drop_table("invoices")
    op.drop_table("usage_events")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("scheduled_tasks")
    for enum in (_aggregation_status, _invoice_status, _message_role, _task_state):
        enum.drop(op.get_bind(), checkfirst=True)
