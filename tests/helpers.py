"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: the pipeline tests share one store,
one scripted provider factory, and a handful of catalog entries.
"""

from __future__ import annotations

from typing import Any

from castor.models import ApiKeyUsage, ModelCapabilities, ModelDefinition
from castor.providers.mock import MockProvider
from castor.providers.models import (
    ReasoningDelta,
    StepFinish,
    TextDelta,
    ToolCall,
    ToolCallPart,
)

PLATFORM_MODEL = ModelDefinition(
    id="gpt-4o-mini",
    name="GPT-4o mini",
    provider="openai",
    capabilities=ModelCapabilities(tool_calling=True),
)
FLEX_MODEL = ModelDefinition(
    id="o4-mini",
    name="o4-mini",
    provider="openai",
    api_key_usage=ApiKeyUsage(allow_user_key=True),
    capabilities=ModelCapabilities(reasoning=True, tool_calling=True),
    uses_premium_credits=True,
)
USER_ONLY_MODEL = ModelDefinition(
    id="claude-4-opus",
    name="Claude 4 Opus",
    provider="anthropic",
    api_key_usage=ApiKeyUsage(allow_user_key=True, user_key_only=True),
    capabilities=ModelCapabilities(reasoning=True, tool_calling=True),
)
FREE_MODEL = ModelDefinition(
    id="deepseek/deepseek-chat-v3-0324:free",
    name="DeepSeek V3",
    provider="openrouter",
    skip_rate_limit=True,
)


class ProviderRecorder:
    """Provider factory that hands out scripted ``MockProvider`` instances.

    Each call pops the next queued provider (or an exception to raise at
    construction time) and records the ``(tag, api_key)`` it was asked for.
    """

    def __init__(self, *providers: MockProvider | BaseException) -> None:
        self._queue = list(providers)
        self.calls: list[tuple[str, str | None]] = []
        self.created: list[MockProvider] = []

    def __call__(self, tag: str, api_key: str | None) -> MockProvider:
        self.calls.append((tag, api_key))
        item = self._queue.pop(0) if self._queue else MockProvider()
        if isinstance(item, BaseException):
            raise item
        self.created.append(item)
        return item

    @property
    def keys(self) -> list[str | None]:
        return [key for _, key in self.calls]


def chat_payload(
    model: str = "gpt-4o-mini", text: str = "Hello", **extra: Any
) -> dict[str, Any]:
    """A minimal valid chat-turn payload."""
    payload: dict[str, Any] = {
        "messages": [
            {"id": "m1", "role": "user", "parts": [{"type": "text", "text": text}]}
        ],
        "chatId": "chat_1",
        "model": model,
    }
    payload.update(extra)
    return payload


def text_step(text: str, **usage: int) -> list[Any]:
    return [TextDelta(text), StepFinish(finish_reason="stop", usage=dict(usage))]


def weather_script() -> list[list[Any]]:
    """Reasoning, one search call, then a final answer."""
    return [
        [
            ReasoningDelta("Need current weather"),
            ToolCallPart(ToolCall(id="t1", name="search", arguments={"query": "Paris weather"})),
            StepFinish(finish_reason="tool_calls", usage={"input_tokens": 20, "output_tokens": 5}),
        ],
        [
            TextDelta("It is "),
            TextDelta("18°C and sunny."),
            StepFinish(finish_reason="stop", usage={"input_tokens": 40, "output_tokens": 8}),
        ],
    ]
