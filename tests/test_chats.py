"""Chat endpoint tests: mocked LLM, real usage recording and title scheduling."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlmodel import select

from chatmeter.models.chat import Chat
from chatmeter.models.scheduled_task import ScheduledTask, TaskState
from chatmeter.models.usage_event import UsageEvent
from chatmeter.services.scheduler import RUN_SCHEDULED_TASK
from chatmeter.services.thread_titles import UPDATE_CHAT_TITLE


def _headers(user_id: uuid.UUID) -> dict:
    return {"X-User-Id": str(user_id)}


def _mock_llm_response(content: str = "Paris.", cached_tokens: int | None = 20):
    """Create a mock LiteLLM acompletion response."""
    usage = MagicMock()
    usage.prompt_tokens = 150
    usage.completion_tokens = 42
    if cached_tokens is None:
        usage.prompt_tokens_details = None
    else:
        usage.prompt_tokens_details = MagicMock(cached_tokens=cached_tokens)

    message = MagicMock()
    message.content = content

    choice = MagicMock()
    choice.message = message

    response = MagicMock()
    response.choices = [choice]
    response.usage = usage

    return response


async def _create_chat(client: AsyncClient, user_id: uuid.UUID) -> str:
    resp = await client.post("/v1/chats", headers=_headers(user_id))
    assert resp.status_code == 201
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_send_message_records_usage(client: AsyncClient, session, redis_pool):
    user_id = uuid.uuid4()
    chat_id = await _create_chat(client, user_id)

    with patch(
        "chatmeter.services.llm.acompletion",
        AsyncMock(return_value=_mock_llm_response()),
    ):
        resp = await client.post(
            f"/v1/chats/{chat_id}/messages",
            json={"message": "What is the capital of France?"},
            headers=_headers(user_id),
        )

    assert resp.status_code == 200
    data = resp.json()
    assert data["message"]["content"] == "Paris."
    assert data["usage"]["total_tokens"] == 192
    assert data["usage"]["cached_prompt_tokens"] == 20

    result = await session.execute(select(UsageEvent).where(UsageEvent.user_id == user_id))
    event = result.scalar_one()
    assert event.chat_id == uuid.UUID(chat_id)
    assert event.provider == "openai"
    assert event.model == "gpt-4o-mini"
    assert (event.prompt_tokens, event.completion_tokens, event.total_tokens) == (150, 42, 192)
    assert event.cached_prompt_tokens == 20
    assert event.billing_period.day == 1


@pytest.mark.asyncio
async def test_send_message_schedules_title_refresh(client: AsyncClient, session, redis_pool):
    user_id = uuid.uuid4()
    chat_id = await _create_chat(client, user_id)

    with patch(
        "chatmeter.services.llm.acompletion",
        AsyncMock(return_value=_mock_llm_response(cached_tokens=None)),
    ):
        for text in ("Hi", "Tell me a joke"):
            resp = await client.post(
                f"/v1/chats/{chat_id}/messages",
                json={"message": text},
                headers=_headers(user_id),
            )
            assert resp.status_code == 200

    assert redis_pool.enqueue_job.await_count == 2
    assert redis_pool.enqueue_job.await_args.args[0] == RUN_SCHEDULED_TASK

    chat = (
        await session.execute(
            select(Chat)
            .where(Chat.id == uuid.UUID(chat_id))
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert chat.message_count == 4

    result = await session.execute(
        select(ScheduledTask)
        .where(ScheduledTask.function == UPDATE_CHAT_TITLE)
        .execution_options(populate_existing=True)
    )
    states = {t.id: t.state for t in result.scalars().all()}
    assert sorted(states.values()) == sorted([TaskState.CANCELLED, TaskState.PENDING])
    assert states[chat.update_title_task_id] == TaskState.PENDING


@pytest.mark.asyncio
async def test_messages_listed_in_order(client: AsyncClient):
    user_id = uuid.uuid4()
    chat_id = await _create_chat(client, user_id)

    with patch(
        "chatmeter.services.llm.acompletion",
        AsyncMock(return_value=_mock_llm_response("Hello!")),
    ):
        await client.post(
            f"/v1/chats/{chat_id}/messages",
            json={"message": "Hi there"},
            headers=_headers(user_id),
        )

    resp = await client.get(f"/v1/chats/{chat_id}/messages", headers=_headers(user_id))
    assert resp.status_code == 200
    assert [(m["role"], m["content"]) for m in resp.json()] == [
        ("user", "Hi there"),
        ("assistant", "Hello!"),
    ]


@pytest.mark.asyncio
async def test_other_users_chat_not_found(client: AsyncClient):
    chat_id = await _create_chat(client, uuid.uuid4())

    resp = await client.get(f"/v1/chats/{chat_id}", headers=_headers(uuid.uuid4()))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_missing_identity_rejected(client: AsyncClient):
    resp = await client.post("/v1/chats")
    assert resp.status_code == 401

    resp = await client.post("/v1/chats", headers={"X-User-Id": "not-a-uuid"})
    assert resp.status_code == 401
