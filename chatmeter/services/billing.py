"""Billing aggregator: folds a period's usage events into per-user invoices.

Flow:
  1. Read the period's UsageEvents page by page, ordered by (user_id, id), so
     all events of one user are contiguous in the stream
  2. Fold each page: merge events into the open user group, flush the group
     as an Invoice when the user changes
  3. Commit the page's invoices together with the checkpoint (cursor + the
     group still open at the end of the page)
  4. On the last page, flush the open group and mark the period completed

The open group is carried across pages through the checkpoint, so a user
whose events straddle a page boundary still gets exactly one invoice.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from chatmeter.core.config import get_settings
from chatmeter.core.periods import billing_period_of, closed_billing_period, format_period
from chatmeter.core.pricing import ModelPrice, price_of
from chatmeter.models.aggregation import AggregationCheckpoint, AggregationStatus
from chatmeter.models.base import utcnow
from chatmeter.models.invoice import Invoice
from chatmeter.models.usage_event import UsageEvent

logger = logging.getLogger(__name__)


class InvalidCursorError(ValueError):
    """Raised when a continuation cursor cannot be decoded."""


# ── Accumulator ───────────────────────────────────────────────

def merge_cached_tokens(current: int | None, incoming: int | None) -> int | None:
    """Merge optional cache metadata: absent on one side keeps the other."""
    if incoming is None:
        return current
    if current is None:
        return incoming
    return current + incoming


class UsageTotals(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_prompt_tokens: int | None = None

    @classmethod
    def of(cls, event: UsageEvent) -> UsageTotals:
        return cls(
            prompt_tokens=event.prompt_tokens,
            completion_tokens=event.completion_tokens,
            total_tokens=event.total_tokens,
            cached_prompt_tokens=event.cached_prompt_tokens,
        )

    def merge(self, other: UsageTotals) -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.cached_prompt_tokens = merge_cached_tokens(
            self.cached_prompt_tokens, other.cached_prompt_tokens
        )


class LineItem(BaseModel):
    """Usage of one (provider, model) pair within a user's group."""
    provider: str
    model: str
    usage: UsageTotals


class InvoiceAccumulator(BaseModel):
    """Running totals of the user group currently being folded."""
    user_id: uuid.UUID
    usage: UsageTotals = Field(default_factory=UsageTotals)
    line_items: list[LineItem] = Field(default_factory=list)

    @classmethod
    def open(cls, event: UsageEvent) -> InvoiceAccumulator:
        acc = cls(user_id=event.user_id)
        acc.add(event)
        return acc

    @classmethod
    def from_snapshot(cls, snapshot: str | None) -> InvoiceAccumulator | None:
        if not snapshot:
            return None
        return cls.model_validate_json(snapshot)

    def add(self, event: UsageEvent) -> None:
        usage = UsageTotals.of(event)
        self.usage.merge(usage)
        for item in self.line_items:
            if item.provider == event.provider and item.model == event.model:
                item.usage.merge(usage)
                return
        self.line_items.append(
            LineItem(provider=event.provider, model=event.model, usage=usage)
        )


def fold_events(
    events: Iterable[UsageEvent],
    accumulator: InvoiceAccumulator | None,
) -> tuple[InvoiceAccumulator | None, list[InvoiceAccumulator]]:
    """Fold one page of events into the open group.

    Returns the group still open after the page and the groups completed
    within it, in stream order. ``accumulator`` itself is left untouched.
    """
    current = accumulator.model_copy(deep=True) if accumulator else None
    flushed: list[InvoiceAccumulator] = []
    for event in events:
        if current is None:
            current = InvoiceAccumulator.open(event)
        elif event.user_id == current.user_id:
            current.add(event)
        else:
            flushed.append(current)
            current = InvoiceAccumulator.open(event)
    return current, flushed


def build_invoice(
    accumulator: InvoiceAccumulator,
    billing_period: datetime,
    pricing: dict[tuple[str, str], ModelPrice] | None = None,
) -> Invoice:
    """Price a completed group. Raises UnknownModelPricingError."""
    lines: list[dict] = []
    amount = 0.0
    for item in accumulator.line_items:
        line_amount = price_of(
            item.provider,
            item.model,
            item.usage.prompt_tokens,
            item.usage.completion_tokens,
            item.usage.cached_prompt_tokens or 0,
            table=pricing,
        )
        amount += line_amount
        lines.append({
            "provider": item.provider,
            "model": item.model,
            **item.usage.model_dump(),
            "amount": line_amount,
        })

    usage = accumulator.usage
    return Invoice(
        user_id=accumulator.user_id,
        billing_period=billing_period,
        amount=amount,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
        cached_prompt_tokens=usage.cached_prompt_tokens or 0,
        line_items=json.dumps(lines),
    )


# ── Cursor ────────────────────────────────────────────────────

def encode_cursor(event: UsageEvent) -> str:
    return f"{event.user_id.hex}:{event.id.hex}"


def decode_cursor(cursor: str) -> tuple[uuid.UUID, uuid.UUID]:
    try:
        user_hex, event_hex = cursor.split(":")
        return uuid.UUID(user_hex), uuid.UUID(event_hex)
    except ValueError as exc:
        raise InvalidCursorError(f"Malformed aggregation cursor: {cursor!r}") from exc


async def _read_page(
    session: AsyncSession,
    billing_period: datetime,
    cursor: str | None,
    page_size: int,
) -> tuple[list[UsageEvent], bool]:
    """Return the next page after ``cursor`` and whether it is the last one."""
    stmt = select(UsageEvent).where(UsageEvent.billing_period == billing_period)
    if cursor:
        user_id, event_id = decode_cursor(cursor)
        stmt = stmt.where(
            or_(
                UsageEvent.user_id > user_id,
                and_(UsageEvent.user_id == user_id, UsageEvent.id > event_id),
            )
        )
    stmt = stmt.order_by(UsageEvent.user_id, UsageEvent.id).limit(page_size + 1)  # type: ignore[arg-type]
    result = await session.execute(stmt)
    rows = list(result.scalars().all())
    return rows[:page_size], len(rows) <= page_size


# ── Run ───────────────────────────────────────────────────────

@dataclass
class AggregationResult:
    billing_period: datetime
    pages: int = 0
    invoices_created: int = 0
    completed: bool = False
    skipped: bool = False
    cursor: str | None = None


async def run_aggregation(
    session: AsyncSession,
    billing_period: datetime | None = None,
    cursor: str | None = None,
    in_progress: InvoiceAccumulator | None = None,
    *,
    page_size: int | None = None,
    max_pages: int | None = None,
    now: datetime | None = None,
    pricing: dict[tuple[str, str], ModelPrice] | None = None,
) -> AggregationResult:
    """Generate invoices for a billing period.

    Args:
        session: DB session; committed once per page.
        billing_period: Any time within the period. Defaults to the
            period that closed ``billing_safety_margin_days`` before ``now``.
        cursor: Resume position. With neither ``cursor`` nor ``in_progress``
            the run resumes from the stored checkpoint.
        in_progress: Open user group carried over from the previous page.
        page_size: Events per page (default from settings).
        max_pages: Stop after this many pages, leaving the run resumable.
        now: Reference time for deriving the default period.
        pricing: Price table override.

    Returns:
        AggregationResult; ``completed`` is False when ``max_pages`` ran out.
    """
    settings = get_settings()
    page_size = page_size or settings.aggregation_page_size
    if billing_period is None:
        billing_period = closed_billing_period(now)
    else:
        billing_period = billing_period_of(billing_period)
    label = format_period(billing_period)

    checkpoint = await session.get(AggregationCheckpoint, billing_period)
    if checkpoint is None:
        checkpoint = AggregationCheckpoint(billing_period=billing_period)
    elif checkpoint.status == AggregationStatus.COMPLETED:
        logger.warning("Invoices for %s were already generated, skipping run", label)
        return AggregationResult(
            billing_period=billing_period,
            completed=True,
            skipped=True,
            cursor=checkpoint.cursor,
        )
    elif cursor is None and in_progress is None:
        cursor = checkpoint.cursor
        in_progress = InvoiceAccumulator.from_snapshot(checkpoint.in_progress)
        if cursor:
            logger.info("Resuming aggregation of %s at cursor %s", label, cursor)

    result = AggregationResult(billing_period=billing_period, cursor=cursor)

    while True:
        page_cursor = cursor
        try:
            events, is_done = await _read_page(session, billing_period, cursor, page_size)
            in_progress, flushed = fold_events(events, in_progress)
            if is_done and in_progress is not None:
                flushed.append(in_progress)
                in_progress = None

            invoices = [build_invoice(acc, billing_period, pricing) for acc in flushed]
            session.add_all(invoices)

            if events:
                cursor = encode_cursor(events[-1])
            checkpoint.cursor = cursor
            checkpoint.in_progress = in_progress.model_dump_json() if in_progress else None
            checkpoint.pages_processed += 1
            checkpoint.invoices_created += len(invoices)
            checkpoint.updated_at = utcnow()
            if is_done:
                checkpoint.status = AggregationStatus.COMPLETED
                checkpoint.completed_at = utcnow()
            session.add(checkpoint)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Aggregation of %s aborted at cursor %s", label, page_cursor)
            raise

        result.pages += 1
        result.invoices_created += len(invoices)
        result.cursor = cursor
        logger.info(
            "Aggregation of %s: page %d committed (%d events, %d invoices)",
            label, result.pages, len(events), len(invoices),
        )

        if is_done:
            result.completed = True
            logger.info(
                "Aggregation of %s completed: %d invoices in %d pages",
                label, result.invoices_created, result.pages,
            )
            return result
        if max_pages is not None and result.pages >= max_pages:
            return result
