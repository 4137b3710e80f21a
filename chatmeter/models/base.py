"""Shared model fields and timestamp helpers.

All timestamps are stored as naive UTC datetimes.
"""

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def to_naive_utc(ts: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive ones are assumed UTC."""
    if ts.tzinfo is not None:
        return ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def utcnow() -> datetime:
    return to_naive_utc(datetime.now(timezone.utc))


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """created_at / updated_at columns; updated_at is refreshed on every UPDATE."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
    )
