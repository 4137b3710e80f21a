"""Monthly invoice generation job."""

from __future__ import annotations

import logging
from datetime import timedelta

from chatmeter.core.config import get_settings
from chatmeter.core.database import async_session_factory
from chatmeter.core.periods import closed_billing_period, format_period, parse_period
from chatmeter.services.billing import run_aggregation
from chatmeter.services.scheduler import schedule, scheduled_action

logger = logging.getLogger(__name__)

GENERATE_INVOICES = "generate_invoices"


@scheduled_action(GENERATE_INVOICES)
async def generate_invoices(ctx: dict, billing_period: str | None = None) -> dict:
    """ARQ task: build invoices for a closed billing period.

    Processes at most ``aggregation_pages_per_job`` pages, then schedules its
    own continuation for the same period, which resumes from the checkpoint.

    Args:
        ctx: ARQ worker context (``ctx["redis"]`` is the worker's pool).
        billing_period: ``YYYY-MM``. Omitted by the monthly cron, in which
            case the most recently closed period is used.

    Returns:
        dict summarising the run.
    """
    settings = get_settings()
    period = parse_period(billing_period) if billing_period else closed_billing_period()
    label = format_period(period)

    async with async_session_factory() as session:
        result = await run_aggregation(
            session,
            period,
            page_size=settings.aggregation_page_size,
            max_pages=settings.aggregation_pages_per_job,
        )

        continuation = None
        if not result.completed:
            continuation = await schedule(
                session,
                ctx["redis"],
                timedelta(0),
                GENERATE_INVOICES,
                {"billing_period": label},
            )
            logger.info(
                "Invoice generation for %s continues in task %s", label, continuation
            )

    return {
        "billing_period": label,
        "pages": result.pages,
        "invoices_created": result.invoices_created,
        "completed": result.completed,
        "skipped": result.skipped,
        "continuation": str(continuation) if continuation else None,
    }
