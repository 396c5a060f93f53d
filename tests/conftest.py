"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
automatic API test skipping, and the shared doubles (store, scripted
providers, catalog) the pipeline tests run against.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os
from typing import Any

import pytest

from castor.config import Config, SearchSettings
from castor.models import ModelCatalog
from castor.orchestrator import ChatOrchestrator
from castor.store import InMemoryChatStore, UserProfile
from castor.telemetry import MemoryReporter, Telemetry
from tests.helpers import FLEX_MODEL, FREE_MODEL, PLATFORM_MODEL, USER_ONLY_MODEL

# =============================================================================
# Shared Doubles
# =============================================================================


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog([PLATFORM_MODEL, FLEX_MODEL, USER_ONLY_MODEL, FREE_MODEL])


@pytest.fixture
def store() -> InMemoryChatStore:
    return InMemoryChatStore(user=UserProfile(id="user_1", name="Ada"))


@pytest.fixture
def config() -> Config:
    return Config(
        platform_keys={"openai": "platform-openai", "anthropic": "platform-anthropic"},
        search=SearchSettings(api_keys={"brave": "brave-key"}),
    )


@pytest.fixture
def reporter() -> MemoryReporter:
    return MemoryReporter()


@pytest.fixture
def make_orchestrator(store, config, catalog, reporter):
    """Build an orchestrator over the shared store with a scripted provider factory."""

    def _make(factory: Any, **overrides: Any) -> ChatOrchestrator:
        kwargs: dict[str, Any] = {
            "catalog": catalog,
            "telemetry": Telemetry(reporter),
            "provider_factory": factory,
        }
        kwargs.update(overrides)
        return ChatOrchestrator(store, config, **kwargs)

    return _make


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_PROVIDER_ENV_PREFIXES = (
    "GEMINI_",
    "OPENAI_",
    "ANTHROPIC_",
    "OPENROUTER_",
    "BRAVE_",
    "TAVILY_",
    "EXA_",
    "CASTOR_",
)


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEFAULT_SEARCH_PROVIDER", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
