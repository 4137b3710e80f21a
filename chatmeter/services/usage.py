"""Usage recorder: appends one UsageEvent per completed model call."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from chatmeter.core.periods import billing_period_of
from chatmeter.models.base import to_naive_utc, utcnow
from chatmeter.models.usage_event import UsageEvent

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token counters reported by the provider for one call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


async def record_usage(
    session: AsyncSession,
    user_id: uuid.UUID,
    model: str,
    provider: str,
    usage: TokenUsage,
    cached_prompt_tokens: int | None = None,
    *,
    chat_id: uuid.UUID | None = None,
    agent_name: str | None = None,
    timestamp: datetime | None = None,
) -> UsageEvent:
    """Stage a UsageEvent in ``session``; the caller commits.

    The billing period is derived from ``timestamp`` (default: now) and is
    never changed afterwards.
    """
    created_at = timestamp or utcnow()
    event = UsageEvent(
        user_id=user_id,
        chat_id=chat_id,
        agent_name=agent_name,
        provider=provider,
        model=model,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
        cached_prompt_tokens=cached_prompt_tokens,
        billing_period=billing_period_of(created_at),
        created_at=to_naive_utc(created_at),
    )
    session.add(event)
    logger.debug(
        "Recorded %d tokens of %s/%s for user %s",
        usage.total_tokens, provider, model, user_id,
    )
    return event
