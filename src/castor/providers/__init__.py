"""Provider implementations and dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.config import platform_key_env_var
from castor.errors import ConfigurationError

from .anthropic import AnthropicProvider
from .base import StreamingProvider
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

if TYPE_CHECKING:
    from castor.models import ProviderTag


def _require_key(provider: str, api_key: str | None) -> str:
    if not api_key:
        raise ConfigurationError(
            f"{provider} API key is missing",
            hint=f"Set {platform_key_env_var(provider)} or add a user key.",
        )
    return api_key


def get_provider(provider: ProviderTag, api_key: str | None) -> StreamingProvider:
    """Return a streaming provider for *provider* bound to *api_key*."""
    match provider:
        case "gemini":
            return GeminiProvider(_require_key(provider, api_key))
        case "openai":
            return OpenAIProvider(_require_key(provider, api_key))
        case "anthropic":
            return AnthropicProvider(_require_key(provider, api_key))
        case "openrouter":
            return OpenRouterProvider(_require_key(provider, api_key))
        case "mock":
            return MockProvider()
        case _:
            raise ConfigurationError(
                f"Unknown provider: {provider!r}",
                hint="Supported providers: gemini, openai, anthropic, openrouter.",
            )


__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "MockProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "StreamingProvider",
    "get_provider",
]
