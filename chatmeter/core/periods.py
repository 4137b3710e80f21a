"""Billing period keys.

A billing period is identified by the UTC start of its calendar month, stored
as a naive UTC datetime like every other timestamp in the database.
"""

from datetime import datetime, timedelta, timezone

from chatmeter.core.config import get_settings
from chatmeter.models.base import to_naive_utc

PERIOD_FORMAT = "%Y-%m"


def billing_period_of(ts: datetime) -> datetime:
    """Return the period key (UTC month start) for a timestamp."""
    return to_naive_utc(ts).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def closed_billing_period(
    now: datetime | None = None, margin: timedelta | None = None
) -> datetime:
    """The most recent period assumed closed: the period of ``now - margin``."""
    if now is None:
        now = datetime.now(timezone.utc)
    if margin is None:
        margin = timedelta(days=get_settings().billing_safety_margin_days)
    return billing_period_of(now - margin)


def format_period(period: datetime) -> str:
    return period.strftime(PERIOD_FORMAT)


def parse_period(value: str) -> datetime:
    """Parse ``YYYY-MM`` into a period key. Raises ValueError if malformed."""
    return datetime.strptime(value, PERIOD_FORMAT)
