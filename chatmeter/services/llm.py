"""LLM calls via LiteLLM: chat replies and conversation titles."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from litellm import acompletion, get_llm_provider

from chatmeter.core.config import get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Respond concisely and accurately to user questions."
)
TITLE_PROMPT = (
    "You are a helpful assistant that creates very short (4-5 words max) "
    "titles for chat conversations."
)

# Maximum conversation history turns to include
MAX_HISTORY_TURNS = 10


@dataclass
class Completion:
    """A model reply plus the usage reported for it."""
    content: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_prompt_tokens: int | None = None


async def generate_reply(
    history: list[dict],
    user_message: str,
    model: str | None = None,
) -> Completion:
    """Answer ``user_message`` given previous turns as [{role, content}, ...]."""
    settings = get_settings()
    model = model or settings.default_llm_model

    messages: list[dict] = [{"role": "system", "content": SYSTEM_PROMPT}]
    for msg in history[-MAX_HISTORY_TURNS * 2 :]:  # 2 messages per turn
        messages.append({"role": msg["role"], "content": msg["content"]})
    messages.append({"role": "user", "content": user_message})

    response = await acompletion(model=model, messages=messages)

    content = response.choices[0].message.content or ""
    usage = response.usage
    prompt_tokens = usage.prompt_tokens if usage else 0
    completion_tokens = usage.completion_tokens if usage else 0

    # Usage is billed under LiteLLM's provider and bare model name
    billed_model, provider, _, _ = get_llm_provider(model)

    return Completion(
        content=content,
        model=billed_model,
        provider=provider,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        cached_prompt_tokens=_cached_prompt_tokens(usage),
    )


async def summarize_title(context: str, model: str | None = None) -> str:
    """Ask the title model for a short title summarising ``context``."""
    settings = get_settings()
    response = await acompletion(
        model=model or settings.title_llm_model,
        messages=[
            {"role": "system", "content": TITLE_PROMPT},
            {
                "role": "user",
                "content": (
                    "Create a very short title (4-5 words max) that summarizes "
                    f"this conversation:\n{context}"
                ),
            },
        ],
    )
    return response.choices[0].message.content or ""


def _cached_prompt_tokens(usage) -> int | None:
    """Prompt tokens served from the provider's cache, when reported."""
    details = getattr(usage, "prompt_tokens_details", None) if usage else None
    if details is None:
        return None
    cached = getattr(details, "cached_tokens", None)
    return cached if isinstance(cached, int) else None
