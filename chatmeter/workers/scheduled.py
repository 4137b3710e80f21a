"""Worker tasks that fire scheduled actions."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta

from sqlmodel import select

from chatmeter.core.config import get_settings
from chatmeter.core.database import async_session_factory
from chatmeter.models.base import utcnow
from chatmeter.models.scheduled_task import ScheduledTask, TaskState
from chatmeter.services.scheduler import claim, get_action

logger = logging.getLogger(__name__)

# Upper bound on overdue tasks fired by one sweep
SWEEP_BATCH_SIZE = 100


async def run_scheduled_task(ctx: dict, task_id: str) -> dict:
    """ARQ task: fire a scheduled action unless it was cancelled meanwhile.

    Args:
        ctx: ARQ worker context, passed on to the action with ``task_id`` added.
        task_id: Handle of the ScheduledTask.

    Returns:
        dict with ``fired`` and, for fired tasks, the action's result.
    """
    handle = uuid.UUID(task_id)
    async with async_session_factory() as session:
        task = await claim(session, handle)
        await session.commit()

    if task is None:
        logger.debug("Scheduled task %s not pending, nothing to run", task_id)
        return {"fired": False}

    logger.info("Firing scheduled task %s (%s)", task.id, task.function)
    try:
        action = get_action(task.function)
        result = await action({**ctx, "task_id": task.id}, **json.loads(task.payload))
    except Exception:
        # Fired tasks are not retried
        logger.exception("Scheduled task %s (%s) failed", task.id, task.function)
        return {"fired": True, "error": "action_failed"}

    return {"fired": True, "result": result}


async def sweep_overdue_tasks(ctx: dict) -> dict:
    """Periodic job: fire pending tasks whose ARQ job never ran.

    A task counts as overdue once it is ``scheduler_sweep_grace_seconds``
    past its ``run_at``.
    """
    settings = get_settings()
    cutoff = utcnow() - timedelta(seconds=settings.scheduler_sweep_grace_seconds)

    async with async_session_factory() as session:
        stmt = (
            select(ScheduledTask.id)
            .where(
                ScheduledTask.state == TaskState.PENDING,
                ScheduledTask.run_at <= cutoff,
            )
            .order_by(ScheduledTask.run_at)  # type: ignore[arg-type]
            .limit(SWEEP_BATCH_SIZE)
        )
        result = await session.execute(stmt)
        overdue = list(result.scalars().all())

    if not overdue:
        logger.debug("Task sweep: nothing overdue")
        return {"fired": 0}

    fired = 0
    for task_id in overdue:
        outcome = await run_scheduled_task(ctx, str(task_id))
        if outcome["fired"]:
            fired += 1

    logger.info("Task sweep: fired %d overdue tasks", fired)
    return {"fired": fired}
