"""ScheduledTask model: registry of delayed actions and their state."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from chatmeter.models.base import TimestampMixin, new_uuid


class TaskState(StrEnum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


class ScheduledTask(TimestampMixin, SQLModel, table=True):
    __tablename__ = "scheduled_tasks"

    # The id is the handle returned to callers
    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    function: str = Field(max_length=100, nullable=False)
    payload: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))

    run_at: datetime = Field(nullable=False, index=True)
    state: TaskState = Field(default=TaskState.PENDING, nullable=False, index=True)
    fired_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
