"""Provider option builder: reasoning effort → native provider options.

Pure functions. A model outside its provider's reasoning family gets no
reasoning option at all, whatever effort the caller asked for.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from castor.types import ReasoningEffort


@dataclass(frozen=True)
class EffortLevel:
    #: Budget for token-budget providers (Gemini, Anthropic).
    tokens: int
    #: Level name for string-effort providers (OpenAI, OpenRouter).
    effort: str


REASONING_EFFORT_CONFIG: dict[str, EffortLevel] = {
    "low": EffortLevel(tokens=1024, effort="low"),
    "medium": EffortLevel(tokens=6000, effort="medium"),
    "high": EffortLevel(tokens=12_000, effort="high"),
}

REASONING_FAMILIES: dict[str, tuple[str, ...]] = {
    "gemini": ("2.5-flash", "2.5-pro"),
    "openai": ("o1", "o3", "o4", "gpt-5"),
    "anthropic": (
        "claude-3-7-sonnet-reasoning",
        "claude-4-sonnet-reasoning",
        "claude-4-opus",
    ),
    "openrouter": ("deepseek-r1", "qwq", ":thinking"),
}

_ANTHROPIC_MIN_BUDGET = 1024


def supports_reasoning(provider: str, model_id: str) -> bool:
    """Whether *model_id* belongs to *provider*'s reasoning-capable family."""
    model = model_id.lower()
    return any(marker in model for marker in REASONING_FAMILIES.get(provider, ()))


def reasoning_options(
    provider: str, model_id: str, effort: ReasoningEffort | str | None
) -> dict[str, Any]:
    """Return the provider-native reasoning option, or ``{}``."""
    if not effort or not supports_reasoning(provider, model_id):
        return {}
    level = REASONING_EFFORT_CONFIG.get(effort)
    if level is None:
        return {}

    match provider:
        case "gemini":
            return {
                "thinking_config": {
                    "include_thoughts": True,
                    "thinking_budget": level.tokens,
                }
            }
        case "anthropic":
            return {
                "thinking": {
                    "type": "enabled",
                    "budget_tokens": max(level.tokens, _ANTHROPIC_MIN_BUDGET),
                }
            }
        case "openai":
            return {"reasoning": {"effort": level.effort, "summary": "detailed"}}
        case "openrouter":
            return {"reasoning": {"effort": level.effort}}
        case _:
            return {}


def build_provider_options(
    provider: str,
    model_id: str,
    effort: ReasoningEffort | str | None = None,
    *,
    api_key: str | None = None,
) -> dict[str, Any]:
    """Build the options for one generation attempt.

    The chosen credential travels with the attempt under ``"api_key"``; the
    engine strips it before options reach the provider request.

    Example:
        build_provider_options("openai", "o4-mini", "high")
        # {"reasoning": {"effort": "high", "summary": "detailed"}}
    """
    options = reasoning_options(provider, model_id, effort)
    if api_key:
        options["api_key"] = api_key
    return options
