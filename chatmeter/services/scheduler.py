"""Delayed-task scheduler: run an action after a delay, cancellable until it fires.

Every scheduled action gets a row in ``scheduled_tasks`` whose id is the
handle handed back to callers. The row's state moves exactly once, from
``pending`` to either ``fired`` or ``cancelled``, through conditional
updates, so a cancel racing with the worker resolves to one outcome.

Execution is delegated to ARQ: ``dispatch`` enqueues ``run_scheduled_task``
deferred until the task is due, and the worker claims the row before running
the registered action. A cancelled task's ARQ job still wakes up but finds
nothing to claim.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from chatmeter.models.base import utcnow
from chatmeter.models.scheduled_task import ScheduledTask, TaskState

logger = logging.getLogger(__name__)

TaskFunction = Callable[..., Awaitable[Any]]

RUN_SCHEDULED_TASK = "run_scheduled_task"

_ACTIONS: dict[str, TaskFunction] = {}


class UnknownTaskFunctionError(LookupError):
    """Raised when a task names an action that was never registered."""


def scheduled_action(name: str) -> Callable[[TaskFunction], TaskFunction]:
    """Register ``fn(ctx, **payload)`` under ``name`` as a schedulable action."""

    def decorator(fn: TaskFunction) -> TaskFunction:
        _ACTIONS[name] = fn
        return fn

    return decorator


def get_action(name: str) -> TaskFunction:
    try:
        return _ACTIONS[name]
    except KeyError:
        raise UnknownTaskFunctionError(f"No scheduled action named {name!r}") from None


# ── Operations ────────────────────────────────────────────────

async def add_task(
    session: AsyncSession,
    delay: timedelta,
    function: str,
    payload: dict | None = None,
    *,
    now: datetime | None = None,
) -> ScheduledTask:
    """Stage a pending task in the caller's transaction.

    The task does not run until the transaction commits and the task has
    been passed to ``dispatch``.
    """
    task = ScheduledTask(
        function=function,
        payload=json.dumps(payload or {}),
        run_at=(now or utcnow()) + delay,
    )
    session.add(task)
    await session.flush()
    return task


async def dispatch(redis, task: ScheduledTask, *, now: datetime | None = None) -> None:
    """Enqueue the ARQ job that will fire ``task`` when it is due."""
    defer_by = max(task.run_at - (now or utcnow()), timedelta(0))
    await redis.enqueue_job(
        RUN_SCHEDULED_TASK,
        str(task.id),
        _job_id=f"scheduled-task:{task.id}",
        _defer_by=defer_by,
    )
    logger.info(
        "Scheduled %s (task %s) in %.0fs", task.function, task.id, defer_by.total_seconds()
    )


async def schedule(
    session: AsyncSession,
    redis,
    delay: timedelta,
    function: str,
    payload: dict | None = None,
    *,
    now: datetime | None = None,
) -> uuid.UUID:
    """Schedule ``function(**payload)`` after ``delay`` and return its handle."""
    task = await add_task(session, delay, function, payload, now=now)
    await session.commit()
    await dispatch(redis, task, now=now)
    return task.id


async def query(session: AsyncSession, handle: uuid.UUID) -> TaskState | None:
    """Return the state of a handle, or None if it is unknown."""
    stmt = select(ScheduledTask.state).where(ScheduledTask.id == handle)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _transition(
    session: AsyncSession, handle: uuid.UUID, target: TaskState, now: datetime
) -> bool:
    values: dict[str, Any] = {"state": target, "updated_at": now}
    if target == TaskState.FIRED:
        values["fired_at"] = now
    else:
        values["cancelled_at"] = now
    stmt = (
        update(ScheduledTask)
        .where(
            ScheduledTask.id == handle,  # type: ignore[arg-type]
            ScheduledTask.state == TaskState.PENDING,  # type: ignore[arg-type]
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def cancel(
    session: AsyncSession, handle: uuid.UUID, *, now: datetime | None = None
) -> bool:
    """Stop a pending task from firing. Caller commits.

    Returns True if the task was pending. Fired, cancelled and unknown
    handles are left alone.
    """
    cancelled = await _transition(session, handle, TaskState.CANCELLED, now or utcnow())
    if cancelled:
        logger.info("Cancelled scheduled task %s", handle)
    else:
        logger.debug("Cancel of task %s ignored: not pending", handle)
    return cancelled


async def claim(
    session: AsyncSession, handle: uuid.UUID, *, now: datetime | None = None
) -> ScheduledTask | None:
    """Mark a pending task fired and return it. Caller commits.

    Returns None when the task was already fired or cancelled.
    """
    if not await _transition(session, handle, TaskState.FIRED, now or utcnow()):
        return None
    return await session.get(ScheduledTask, handle, populate_existing=True)


async def reschedule(
    session: AsyncSession,
    previous: uuid.UUID | None,
    delay: timedelta,
    function: str,
    payload: dict | None = None,
    *,
    now: datetime | None = None,
) -> ScheduledTask:
    """Cancel ``previous`` if it is still pending and stage a replacement."""
    if previous is not None and await query(session, previous) == TaskState.PENDING:
        await cancel(session, previous, now=now)
    return await add_task(session, delay, function, payload, now=now)
