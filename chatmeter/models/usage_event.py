"""UsageEvent model: one record of LLM token consumption per model call.

Rows are append-only: they back the invoices built from them and are never
updated or deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from chatmeter.models.base import new_uuid, utcnow


class UsageEvent(SQLModel, table=True):
    __tablename__ = "usage_events"
    __table_args__ = (
        # Aggregation reads each period in (user_id, id) order
        Index("ix_usage_events_period_user", "billing_period", "user_id", "id"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)
    chat_id: uuid.UUID | None = Field(default=None, foreign_key="chats.id", index=True)
    agent_name: str | None = Field(default=None, max_length=100)

    provider: str = Field(max_length=50, nullable=False)
    model: str = Field(max_length=100, nullable=False)
    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)
    # Provider cache metadata: the part of prompt_tokens served from cache
    cached_prompt_tokens: int | None = Field(default=None)

    billing_period: datetime = Field(nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
