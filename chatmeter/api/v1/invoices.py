"""Invoice endpoints: read generated invoices, trigger a period's run."""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel
from sqlmodel import select

from chatmeter.api.deps import Redis, Session
from chatmeter.core.periods import format_period, parse_period
from chatmeter.models.invoice import Invoice, InvoiceRead, InvoiceStatus
from chatmeter.workers.invoices import GENERATE_INVOICES

router = APIRouter(prefix="/invoices", tags=["invoices"])


class AggregateRequest(BaseModel):
    billing_period: str


class AggregateResponse(BaseModel):
    billing_period: str
    job_id: str | None
    enqueued: bool


@router.get("", response_model=list[InvoiceRead])
async def list_invoices(
    session: Session,
    billing_period: str | None = None,
    user_id: uuid.UUID | None = None,
    invoice_status: Annotated[InvoiceStatus | None, Query(alias="status")] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[InvoiceRead]:
    """List invoices, optionally filtered by period (YYYY-MM), user and status."""
    stmt = select(Invoice)
    if billing_period:
        stmt = stmt.where(Invoice.billing_period == _parse_period(billing_period))
    if user_id:
        stmt = stmt.where(Invoice.user_id == user_id)
    if invoice_status:
        stmt = stmt.where(Invoice.status == invoice_status)
    stmt = (
        stmt
        .order_by(Invoice.billing_period.desc(), Invoice.user_id)  # type: ignore[attr-defined]
        .limit(min(limit, 1000))
        .offset(offset)
    )
    result = await session.execute(stmt)
    return [InvoiceRead.model_validate(inv) for inv in result.scalars().all()]


@router.get("/{billing_period}/{user_id}", response_model=InvoiceRead)
async def get_invoice(
    billing_period: str,
    user_id: uuid.UUID,
    session: Session,
) -> InvoiceRead:
    stmt = select(Invoice).where(
        Invoice.billing_period == _parse_period(billing_period),
        Invoice.user_id == user_id,
    )
    result = await session.execute(stmt)
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/aggregate",
    response_model=AggregateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def aggregate_invoices(body: AggregateRequest, redis: Redis) -> AggregateResponse:
    """Enqueue invoice generation for an explicit billing period."""
    label = format_period(_parse_period(body.billing_period))
    job = await redis.enqueue_job(
        GENERATE_INVOICES,
        billing_period=label,
        _job_id=f"{GENERATE_INVOICES}:{label}",
    )
    return AggregateResponse(
        billing_period=label,
        job_id=job.job_id if job else None,
        enqueued=job is not None,
    )


def _parse_period(value: str) -> datetime:
    try:
        return parse_period(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="billing_period must be formatted as YYYY-MM",
        ) from exc
