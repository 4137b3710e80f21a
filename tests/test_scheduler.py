"""Tests for the delayed-task scheduler."""

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from chatmeter.models.scheduled_task import ScheduledTask, TaskState
from chatmeter.services import scheduler
from chatmeter.services.scheduler import (
    RUN_SCHEDULED_TASK,
    UnknownTaskFunctionError,
    cancel,
    get_action,
    query,
    reschedule,
    schedule,
)
from chatmeter.workers.scheduled import run_scheduled_task, sweep_overdue_tasks

T0 = datetime(2025, 3, 1, 12, 0, 0)


async def _fire(handle: uuid.UUID, test_session_factory, action: AsyncMock) -> dict:
    """Run the ARQ task for ``handle`` with a mocked ``ping`` action."""
    with (
        patch("chatmeter.workers.scheduled.async_session_factory", test_session_factory),
        patch.dict(scheduler._ACTIONS, {"ping": action}),
    ):
        return await run_scheduled_task({}, str(handle))


async def _state(test_session_factory, handle: uuid.UUID) -> TaskState | None:
    async with test_session_factory() as fresh:
        return await query(fresh, handle)


@pytest.mark.asyncio
async def test_schedule_registers_pending_task(session, redis_pool, test_session_factory):
    handle = await schedule(
        session, redis_pool, timedelta(seconds=30), "ping", {"n": 1}, now=T0
    )

    assert await _state(test_session_factory, handle) == TaskState.PENDING
    redis_pool.enqueue_job.assert_awaited_once()
    call = redis_pool.enqueue_job.await_args
    assert call.args == (RUN_SCHEDULED_TASK, str(handle))
    assert call.kwargs["_defer_by"] == timedelta(seconds=30)
    assert call.kwargs["_job_id"] == f"scheduled-task:{handle}"

    async with test_session_factory() as fresh:
        task = await fresh.get(ScheduledTask, handle)
    assert task.run_at == T0 + timedelta(seconds=30)
    assert task.function == "ping"


@pytest.mark.asyncio
async def test_fire_runs_action_with_payload(session, redis_pool, test_session_factory):
    handle = await schedule(session, redis_pool, timedelta(0), "ping", {"n": 7})
    action = AsyncMock(return_value="pong")

    outcome = await _fire(handle, test_session_factory, action)

    assert outcome == {"fired": True, "result": "pong"}
    action.assert_awaited_once()
    ctx = action.await_args.args[0]
    assert ctx["task_id"] == handle
    assert action.await_args.kwargs == {"n": 7}
    assert await _state(test_session_factory, handle) == TaskState.FIRED


@pytest.mark.asyncio
async def test_cancelled_task_does_not_fire(session, redis_pool, test_session_factory):
    handle = await schedule(session, redis_pool, timedelta(minutes=5), "ping")
    assert await cancel(session, handle) is True
    await session.commit()

    action = AsyncMock()
    outcome = await _fire(handle, test_session_factory, action)

    assert outcome == {"fired": False}
    action.assert_not_awaited()
    assert await _state(test_session_factory, handle) == TaskState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_twice_is_a_no_op(session, redis_pool, test_session_factory):
    handle = await schedule(session, redis_pool, timedelta(minutes=5), "ping")

    assert await cancel(session, handle) is True
    assert await cancel(session, handle) is False
    await session.commit()

    assert await _state(test_session_factory, handle) == TaskState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_after_fire_changes_nothing(session, redis_pool, test_session_factory):
    handle = await schedule(session, redis_pool, timedelta(0), "ping")
    action = AsyncMock()
    await _fire(handle, test_session_factory, action)

    assert await cancel(session, handle) is False
    await session.commit()
    # A duplicate delivery of the ARQ job does not run the action again
    await _fire(handle, test_session_factory, action)

    action.assert_awaited_once()
    assert await _state(test_session_factory, handle) == TaskState.FIRED


@pytest.mark.asyncio
async def test_cancel_unknown_handle(session):
    assert await cancel(session, uuid.uuid4()) is False
    assert await query(session, uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_reschedule_replaces_pending_task(session, redis_pool, test_session_factory):
    first = await schedule(session, redis_pool, timedelta(minutes=5), "ping", now=T0)

    replacement = await reschedule(
        session, first, timedelta(minutes=5), "ping", now=T0 + timedelta(minutes=1)
    )
    await session.commit()

    assert await _state(test_session_factory, first) == TaskState.CANCELLED
    assert await _state(test_session_factory, replacement.id) == TaskState.PENDING
    assert replacement.run_at == T0 + timedelta(minutes=6)


@pytest.mark.asyncio
async def test_failing_action_stays_fired(session, redis_pool, test_session_factory):
    handle = await schedule(session, redis_pool, timedelta(0), "ping")
    action = AsyncMock(side_effect=RuntimeError("boom"))

    outcome = await _fire(handle, test_session_factory, action)

    assert outcome == {"fired": True, "error": "action_failed"}
    assert await _state(test_session_factory, handle) == TaskState.FIRED


@pytest.mark.asyncio
async def test_sweep_fires_only_overdue_pending_tasks(session, redis_pool, test_session_factory):
    long_ago = datetime(2020, 1, 1)
    overdue = await schedule(session, redis_pool, timedelta(0), "ping", now=long_ago)
    cancelled = await schedule(session, redis_pool, timedelta(0), "ping", now=long_ago)
    await cancel(session, cancelled)
    await session.commit()
    future = await schedule(session, redis_pool, timedelta(hours=1), "ping")

    action = AsyncMock()
    with (
        patch("chatmeter.workers.scheduled.async_session_factory", test_session_factory),
        patch.dict(scheduler._ACTIONS, {"ping": action}),
    ):
        result = await sweep_overdue_tasks({})

    assert result == {"fired": 1}
    action.assert_awaited_once()
    assert await _state(test_session_factory, overdue) == TaskState.FIRED
    assert await _state(test_session_factory, future) == TaskState.PENDING


def test_unknown_action_name():
    with pytest.raises(UnknownTaskFunctionError):
        get_action("no-such-action")
