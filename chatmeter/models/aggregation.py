"""AggregationCheckpoint model: resume point of a billing period's invoice run."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from chatmeter.models.base import TimestampMixin


class AggregationStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"


class AggregationCheckpoint(TimestampMixin, SQLModel, table=True):
    __tablename__ = "aggregation_checkpoints"

    billing_period: datetime = Field(primary_key=True)
    status: AggregationStatus = Field(default=AggregationStatus.RUNNING, nullable=False)

    # Position after the last committed page; None before the first page
    cursor: str | None = Field(default=None, max_length=100)
    # JSON snapshot of the user group still open at the end of that page
    in_progress: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    pages_processed: int = Field(default=0)
    invoices_created: int = Field(default=0)
    completed_at: datetime | None = Field(default=None)
