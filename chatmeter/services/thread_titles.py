"""Chat title refresh, debounced.

Every new message pushes the chat's title refresh back by the quiet window:
a still-pending refresh is cancelled and a new one scheduled, so only the
last message of a burst triggers a summary.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from chatmeter.core.config import get_settings
from chatmeter.core.database import async_session_factory
from chatmeter.models.chat import Chat
from chatmeter.models.message import Message, MessageRole
from chatmeter.services.llm import summarize_title
from chatmeter.services.scheduler import dispatch, reschedule, scheduled_action

logger = logging.getLogger(__name__)

UPDATE_CHAT_TITLE = "update_chat_title"


async def maybe_update_chat_title(
    session: AsyncSession,
    redis,
    chat_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> uuid.UUID | None:
    """Reset the chat's title refresh timer. Returns the new task handle.

    The chat row is locked while its pointer is swapped so concurrent
    messages for the same chat queue up behind each other.
    """
    settings = get_settings()
    stmt = (
        select(Chat)
        .where(Chat.id == chat_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    chat = result.scalar_one_or_none()
    if chat is None:
        logger.warning("Title refresh requested for unknown chat %s", chat_id)
        return None

    task = await reschedule(
        session,
        chat.update_title_task_id,
        timedelta(seconds=settings.title_quiet_window_seconds),
        UPDATE_CHAT_TITLE,
        {"chat_id": str(chat_id)},
        now=now,
    )
    chat.update_title_task_id = task.id
    session.add(chat)
    await session.commit()

    await dispatch(redis, task, now=now)
    return task.id


def format_title_context(messages: list[Message]) -> str:
    """Render messages as ``User: ...`` / ``Assistant: ...`` lines."""
    lines = []
    for msg in messages:
        speaker = "Assistant" if msg.role == MessageRole.ASSISTANT else "User"
        lines.append(f"{speaker}: {msg.content}")
    return "\n".join(lines)


@scheduled_action(UPDATE_CHAT_TITLE)
async def update_chat_title(ctx: dict, chat_id: str) -> dict:
    """Scheduled action: summarise the latest messages into the chat title."""
    settings = get_settings()
    async with async_session_factory() as session:
        chat = await session.get(Chat, uuid.UUID(chat_id))
        if chat is None:
            logger.error("Chat %s not found for title refresh", chat_id)
            return {"error": "chat_not_found"}

        stmt = (
            select(Message)
            .where(
                Message.chat_id == chat.id,
                Message.role.in_([MessageRole.USER, MessageRole.ASSISTANT]),  # type: ignore[attr-defined]
            )
            .order_by(Message.created_at.desc())  # type: ignore[attr-defined]
            .limit(settings.title_context_messages)
        )
        result = await session.execute(stmt)
        messages = list(reversed(result.scalars().all()))
        if not messages:
            return {"title": chat.title}

        title = await summarize_title(format_title_context(messages))

        chat.title = title
        session.add(chat)
        task_id = ctx.get("task_id")
        if task_id is not None:
            # Activity during the summary may already point at a newer task
            stmt = (
                update(Chat)
                .where(
                    Chat.id == chat.id,  # type: ignore[arg-type]
                    Chat.update_title_task_id == task_id,  # type: ignore[arg-type]
                )
                .values(update_title_task_id=None)
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
        await session.commit()

    logger.info("Updated title of chat %s", chat_id)
    return {"title": title}
