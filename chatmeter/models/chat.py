"""Chat model: a conversation between a user and the assistant."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from chatmeter.models.base import TimestampMixin, new_uuid


class Chat(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chats"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)

    title: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    message_count: int = Field(default=0)

    # Handle of the pending title refresh, if one has been scheduled
    update_title_task_id: uuid.UUID | None = Field(
        default=None, foreign_key="scheduled_tasks.id"
    )


# ── Pydantic schemas ─────────────────────────────────────────

class ChatRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime
