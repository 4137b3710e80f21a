"""Invoice model: one bill per user per billing period."""

import json
import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import field_validator
from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from chatmeter.models.base import TimestampMixin, new_uuid


class InvoiceStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Invoice(TimestampMixin, SQLModel, table=True):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "billing_period", name="uq_invoices_user_period"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)
    billing_period: datetime = Field(nullable=False, index=True)

    amount: float = Field(default=0.0)
    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING, nullable=False)

    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)
    cached_prompt_tokens: int = Field(default=0)

    # Per (provider, model) breakdown (JSON array)
    line_items: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))


# ── Pydantic schemas ─────────────────────────────────────────

class InvoiceRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    billing_period: datetime
    amount: float
    status: InvoiceStatus
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cached_prompt_tokens: int
    line_items: list[dict]
    created_at: datetime

    @field_validator("line_items", mode="before")
    @classmethod
    def _decode_line_items(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value
