"""Model catalog: read-only definitions of the models a turn can target.

The catalog itself is owned elsewhere; this module only fixes its shape and
ships a small default set so the pipeline can run standalone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

ProviderTag = Literal["gemini", "openai", "anthropic", "openrouter", "mock"]


@dataclass(frozen=True)
class ApiKeyUsage:
    """Per-model policy for user-supplied credentials."""

    allow_user_key: bool = False
    user_key_only: bool = False


@dataclass(frozen=True)
class ModelCapabilities:
    """Feature flags advertised by a model."""

    reasoning: bool = False
    tool_calling: bool = False
    vision: bool = False


@dataclass(frozen=True)
class ModelDefinition:
    """One catalog entry. Immutable for the lifetime of a request."""

    id: str
    name: str
    provider: ProviderTag
    #: Identifier sent to the provider; defaults to ``id``.
    api_model: str | None = None
    api_key_usage: ApiKeyUsage = field(default_factory=ApiKeyUsage)
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)
    skip_rate_limit: bool = False
    uses_premium_credits: bool = False

    @property
    def provider_model(self) -> str:
        """Model identifier as the provider expects it."""
        return self.api_model or self.id


class ModelCatalog:
    """Lookup table of model definitions keyed by id."""

    def __init__(self, models: Iterable[ModelDefinition] = ()) -> None:
        self._models: dict[str, ModelDefinition] = {}
        for model in models:
            self._models[model.id] = model

    def get(self, model_id: str) -> ModelDefinition | None:
        return self._models.get(model_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelDefinition]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


DEFAULT_MODELS: tuple[ModelDefinition, ...] = (
    ModelDefinition(
        id="gemini-2.0-flash",
        name="Gemini 2.0 Flash",
        provider="gemini",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(tool_calling=True, vision=True),
    ),
    ModelDefinition(
        id="gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        provider="gemini",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(reasoning=True, tool_calling=True, vision=True),
    ),
    ModelDefinition(
        id="gemini-2.5-pro",
        name="Gemini 2.5 Pro",
        provider="gemini",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(reasoning=True, tool_calling=True, vision=True),
        uses_premium_credits=True,
    ),
    ModelDefinition(
        id="gpt-4o-mini",
        name="GPT-4o mini",
        provider="openai",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(tool_calling=True, vision=True),
    ),
    ModelDefinition(
        id="o4-mini",
        name="o4-mini",
        provider="openai",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(reasoning=True, tool_calling=True, vision=True),
        uses_premium_credits=True,
    ),
    ModelDefinition(
        id="claude-4-sonnet",
        name="Claude 4 Sonnet",
        provider="anthropic",
        api_model="claude-sonnet-4-20250514",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(tool_calling=True, vision=True),
        uses_premium_credits=True,
    ),
    ModelDefinition(
        id="claude-4-sonnet-reasoning",
        name="Claude 4 Sonnet (Reasoning)",
        provider="anthropic",
        api_model="claude-sonnet-4-20250514",
        api_key_usage=ApiKeyUsage(allow_user_key=True),
        capabilities=ModelCapabilities(reasoning=True, tool_calling=True, vision=True),
        uses_premium_credits=True,
    ),
    ModelDefinition(
        id="claude-4-opus",
        name="Claude 4 Opus",
        provider="anthropic",
        api_model="claude-opus-4-20250514",
        api_key_usage=ApiKeyUsage(allow_user_key=True, user_key_only=True),
        capabilities=ModelCapabilities(reasoning=True, tool_calling=True, vision=True),
    ),
    ModelDefinition(
        id="deepseek/deepseek-chat-v3-0324:free",
        name="DeepSeek V3 0324",
        provider="openrouter",
        capabilities=ModelCapabilities(tool_calling=True),
        skip_rate_limit=True,
    ),
    ModelDefinition(
        id="deepseek/deepseek-r1:free",
        name="DeepSeek R1",
        provider="openrouter",
        capabilities=ModelCapabilities(reasoning=True),
    ),
)


def default_catalog() -> ModelCatalog:
    """Return a catalog populated with ``DEFAULT_MODELS``."""
    return ModelCatalog(DEFAULT_MODELS)
