"""Chat endpoints: send messages, meter the model call, refresh titles."""

import logging
import uuid

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field
from sqlmodel import select

from chatmeter.api.deps import CurrentUser, Redis, Session
from chatmeter.models.chat import Chat, ChatRead
from chatmeter.models.message import Message, MessageRead, MessageRole
from chatmeter.services.llm import generate_reply
from chatmeter.services.thread_titles import maybe_update_chat_title
from chatmeter.services.usage import TokenUsage, record_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])

AGENT_NAME = "chat"


# ── Request / Response schemas ────────────────────────────────

class SendMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=32000)


class SendMessageResponse(BaseModel):
    chat_id: uuid.UUID
    message: MessageRead
    usage: dict = Field(default_factory=dict)


# ── Routes ────────────────────────────────────────────────────

@router.post("", response_model=ChatRead, status_code=status.HTTP_201_CREATED)
async def create_chat(user_id: CurrentUser, session: Session) -> ChatRead:
    chat = Chat(user_id=user_id)
    session.add(chat)
    await session.commit()
    await session.refresh(chat)
    return ChatRead.model_validate(chat)


@router.get("", response_model=list[ChatRead])
async def list_chats(
    user_id: CurrentUser,
    session: Session,
    limit: int = 50,
    offset: int = 0,
) -> list[ChatRead]:
    """List the caller's chats, newest first."""
    stmt = (
        select(Chat)
        .where(Chat.user_id == user_id)
        .order_by(Chat.created_at.desc())  # type: ignore[attr-defined]
        .limit(min(limit, 100))
        .offset(offset)
    )
    result = await session.execute(stmt)
    return [ChatRead.model_validate(c) for c in result.scalars().all()]


@router.post("/{chat_id}/messages", response_model=SendMessageResponse)
async def send_message(
    chat_id: uuid.UUID,
    body: SendMessageRequest,
    user_id: CurrentUser,
    session: Session,
    redis: Redis,
) -> SendMessageResponse:
    """Send a message and get the assistant's reply.

    The model call is recorded as a usage event for the caller, and the
    chat's title refresh is pushed back by the quiet window.
    """
    chat = await _get_chat(chat_id, user_id, session)
    history = await _load_history(chat.id, session)

    session.add(Message(chat_id=chat.id, role=MessageRole.USER, content=body.message))
    await session.flush()

    result = await generate_reply(history, body.message)

    assistant_msg = Message(
        chat_id=chat.id,
        role=MessageRole.ASSISTANT,
        content=result.content,
        agent_name=AGENT_NAME,
        prompt_tokens=result.prompt_tokens,
        completion_tokens=result.completion_tokens,
    )
    session.add(assistant_msg)

    await record_usage(
        session,
        user_id,
        result.model,
        result.provider,
        TokenUsage(
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
        ),
        result.cached_prompt_tokens,
        chat_id=chat.id,
        agent_name=AGENT_NAME,
    )

    chat.message_count += 2  # user + assistant
    session.add(chat)
    await session.commit()
    await session.refresh(assistant_msg)

    try:
        await maybe_update_chat_title(session, redis, chat.id)
    except Exception:
        # Reply is already committed
        logger.exception("Scheduling title refresh failed for chat %s", chat.id)

    return SendMessageResponse(
        chat_id=chat.id,
        message=MessageRead.model_validate(assistant_msg),
        usage={
            "model": result.model,
            "prompt_tokens": result.prompt_tokens,
            "completion_tokens": result.completion_tokens,
            "total_tokens": result.total_tokens,
            "cached_prompt_tokens": result.cached_prompt_tokens,
        },
    )


@router.get("/{chat_id}", response_model=ChatRead)
async def get_chat(chat_id: uuid.UUID, user_id: CurrentUser, session: Session) -> ChatRead:
    chat = await _get_chat(chat_id, user_id, session)
    return ChatRead.model_validate(chat)


@router.get("/{chat_id}/messages", response_model=list[MessageRead])
async def get_chat_messages(
    chat_id: uuid.UUID,
    user_id: CurrentUser,
    session: Session,
) -> list[MessageRead]:
    await _get_chat(chat_id, user_id, session)  # verify access

    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc())  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return [MessageRead.model_validate(m) for m in result.scalars().all()]


# ── Internal helpers ──────────────────────────────────────────

async def _get_chat(chat_id: uuid.UUID, user_id: uuid.UUID, session) -> Chat:
    stmt = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
    result = await session.execute(stmt)
    chat = result.scalar_one_or_none()
    if chat is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chat not found",
        )
    return chat


async def _load_history(chat_id: uuid.UUID, session) -> list[dict]:
    """Load previous messages for context (user + assistant only)."""
    stmt = (
        select(Message)
        .where(
            Message.chat_id == chat_id,
            Message.role.in_([MessageRole.USER, MessageRole.ASSISTANT]),  # type: ignore[attr-defined]
        )
        .order_by(Message.created_at.asc())  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt)
    return [{"role": m.role, "content": m.content} for m in result.scalars().all()]
