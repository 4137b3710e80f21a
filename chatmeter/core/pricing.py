"""Centralized model pricing configuration.

Single source of truth for LLM token costs, in USD per 1M tokens, keyed by
``(provider, model)``. Cached prompt tokens are billed at the discounted
``cached_input`` rate; providers without prompt caching charge the full input
rate for them.

Unknown models raise UnknownModelPricingError; there is no default price.
"""

from typing import NamedTuple

TOKENS_PER_UNIT = 1_000_000


class ModelPrice(NamedTuple):
    input: float
    cached_input: float
    output: float


class UnknownModelPricingError(LookupError):
    """Raised when no price is configured for a (provider, model) pair."""

    def __init__(self, provider: str, model: str) -> None:
        super().__init__(f"No pricing configured for {provider}/{model}")
        self.provider = provider
        self.model = model


MODEL_PRICING: dict[tuple[str, str], ModelPrice] = {
    # OpenAI
    ("openai", "gpt-4o"):              ModelPrice(2.50, 1.25, 10.00),
    ("openai", "gpt-4o-mini"):         ModelPrice(0.15, 0.075, 0.60),
    ("openai", "gpt-4.1"):             ModelPrice(2.00, 0.50, 8.00),
    ("openai", "gpt-4.1-mini"):        ModelPrice(0.40, 0.10, 1.60),
    ("openai", "gpt-4.1-nano"):        ModelPrice(0.10, 0.025, 0.40),
    ("openai", "o3-mini"):             ModelPrice(1.10, 0.55, 4.40),
    # Anthropic
    ("anthropic", "claude-sonnet-4-5-20250929"):  ModelPrice(3.00, 0.30, 15.00),
    ("anthropic", "claude-haiku-4-5-20251001"):   ModelPrice(1.00, 0.10, 5.00),
    # Google (LiteLLM "gemini/" models)
    ("gemini", "gemini-2.0-flash"):    ModelPrice(0.10, 0.025, 0.40),
    ("gemini", "gemini-1.5-pro"):      ModelPrice(1.25, 1.25, 5.00),
}


def get_pricing(
    provider: str,
    model: str,
    table: dict[tuple[str, str], ModelPrice] | None = None,
) -> ModelPrice:
    """Return the per-1M prices for a (provider, model) pair."""
    prices = MODEL_PRICING if table is None else table
    try:
        return prices[(provider, model)]
    except KeyError:
        raise UnknownModelPricingError(provider, model) from None


def price_of(
    provider: str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    cached_prompt_tokens: int = 0,
    table: dict[tuple[str, str], ModelPrice] | None = None,
) -> float:
    """Calculate the USD amount for a block of usage of one model.

    ``cached_prompt_tokens`` is the subset of ``prompt_tokens`` that the
    provider served from its prompt cache.
    """
    price = get_pricing(provider, model, table)
    uncached = prompt_tokens - cached_prompt_tokens
    return (
        uncached * price.input
        + cached_prompt_tokens * price.cached_input
        + completion_tokens * price.output
    ) / TOKENS_PER_UNIT
