"""Configuration: frozen Config resolved from the environment."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from types import MappingProxyType
from typing import Any, Literal

from dotenv import load_dotenv

from castor.errors import ConfigurationError

load_dotenv()

SearchProviderName = Literal["brave", "tavily", "exa"]

#: Fallback order used after the default search provider.
SEARCH_PROVIDER_ORDER: tuple[SearchProviderName, ...] = ("brave", "tavily", "exa")

# Platform (shared) API key environment variable names
_PLATFORM_KEY_ENV_VARS: dict[str, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

_SEARCH_KEY_ENV_VARS: dict[SearchProviderName, str] = {
    "brave": "BRAVE_API_KEY",
    "tavily": "TAVILY_API_KEY",
    "exa": "EXA_API_KEY",
}


def _frozen(mapping: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({k: v for k, v in mapping.items() if v})


@dataclass(frozen=True)
class SearchSettings:
    """Web search backends and result post-processing limits."""

    api_keys: Mapping[str, str] = field(default_factory=dict)
    default_provider: SearchProviderName = "brave"
    max_results: int = 3
    scrape_content: bool = True
    #: Character budget for scraped content, including the ``...`` suffix.
    max_text_characters: int = 500
    timeout_s: float = 15.0

    def __post_init__(self) -> None:
        """Validate provider names and limits."""
        if self.default_provider not in SEARCH_PROVIDER_ORDER:
            raise ConfigurationError(
                f"Unknown search provider: {self.default_provider!r}",
                hint="Supported providers: 'brave', 'tavily', 'exa'",
            )
        if self.max_results < 1:
            raise ConfigurationError(
                f"max_results must be ≥ 1, got {self.max_results}",
            )
        if self.max_text_characters < 4:
            raise ConfigurationError(
                f"max_text_characters must be ≥ 4, got {self.max_text_characters}",
                hint="Truncation reserves three characters for the ellipsis.",
            )
        object.__setattr__(self, "api_keys", _frozen(self.api_keys))

    def api_key(self, provider: str) -> str | None:
        return self.api_keys.get(provider)

    def has_api_key(self, provider: str) -> bool:
        return bool(self.api_keys.get(provider))

    def __repr__(self) -> str:
        return (
            f"SearchSettings(default_provider={self.default_provider!r}, "
            f"configured={sorted(self.api_keys)!r})"
        )


@dataclass(frozen=True)
class Config:
    """Immutable configuration for the chat pipeline.

    Platform keys and search keys are auto-resolved from standard environment
    variables by ``Config.from_env()``.

    Example:
        config = Config.from_env()
        # OPENAI_API_KEY, BRAVE_API_KEY, ... are picked up automatically
    """

    #: Shared platform keys by provider tag.
    platform_keys: Mapping[str, str] = field(default_factory=dict)
    search: SearchSettings = field(default_factory=SearchSettings)
    #: Handed to the credential store; the pipeline never decrypts anything.
    encryption_secret: str | None = None
    #: Upper bound on provider round-trips per turn (tool loops included).
    max_steps: int = 20
    use_mock: bool = False
    telemetry_enabled: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_steps < 1:
            raise ConfigurationError(
                f"max_steps must be ≥ 1, got {self.max_steps}",
                hint="This bounds how many tool round-trips a single turn may take.",
            )
        object.__setattr__(self, "platform_keys", _frozen(self.platform_keys))

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Build a Config from environment variables, then apply overrides."""
        platform_keys = {
            provider: os.environ.get(env_var, "")
            for provider, env_var in _PLATFORM_KEY_ENV_VARS.items()
        }
        search_keys = {
            provider: os.environ.get(env_var, "")
            for provider, env_var in _SEARCH_KEY_ENV_VARS.items()
        }
        default_search = os.environ.get("DEFAULT_SEARCH_PROVIDER", "brave").strip()
        values: dict[str, Any] = {
            "platform_keys": platform_keys,
            "search": SearchSettings(
                api_keys=search_keys,
                default_provider=default_search or "brave",  # type: ignore[arg-type]
            ),
            "encryption_secret": os.environ.get("CASTOR_ENCRYPTION_SECRET") or None,
            "use_mock": os.environ.get("CASTOR_USE_MOCK") == "1",
            "telemetry_enabled": os.environ.get("CASTOR_TELEMETRY") == "1",
        }
        values.update(overrides)
        return cls(**values)

    def platform_key(self, provider: str) -> str | None:
        """Return the shared key for *provider*, if configured."""
        return self.platform_keys.get(provider)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(platform_keys={sorted(self.platform_keys)!r}, "
            f"search={self.search!r}, "
            f"encryption_secret={'[REDACTED]' if self.encryption_secret else None}, "
            f"use_mock={self.use_mock})"
        )

    __repr__ = __str__


def platform_key_env_var(provider: str) -> str:
    """Name of the environment variable holding *provider*'s shared key."""
    return _PLATFORM_KEY_ENV_VARS.get(provider, f"{provider.upper()}_API_KEY")
