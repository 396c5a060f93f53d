"""Search adapter construction and provider fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from castor.config import SEARCH_PROVIDER_ORDER, SearchSettings
from castor.errors import ConfigurationError, SearchError
from castor.search.brave import BraveSearchAdapter
from castor.search.exa import ExaSearchAdapter
from castor.search.tavily import TavilySearchAdapter

if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx

    from castor.search._http import HttpSearchAdapter
    from castor.search.types import SearchOptions, SearchResult

logger = logging.getLogger(__name__)

_ADAPTERS: dict[str, type[HttpSearchAdapter]] = {
    "brave": BraveSearchAdapter,
    "tavily": TavilySearchAdapter,
    "exa": ExaSearchAdapter,
}


def get_search_adapter(
    name: str,
    settings: SearchSettings,
    *,
    client: httpx.AsyncClient | None = None,
) -> HttpSearchAdapter:
    """Build the adapter for *name* from configured keys."""
    adapter_cls = _ADAPTERS.get(name)
    if adapter_cls is None:
        raise ConfigurationError(f"Unknown search provider: {name!r}")
    api_key = settings.api_key(name)
    if not api_key:
        raise ConfigurationError(
            f"{name} search API key is missing",
            hint=f"Set {name.upper()}_API_KEY to enable {name} search.",
        )
    return adapter_cls(
        api_key,
        client=client,
        timeout_s=settings.timeout_s,
        max_text_characters=settings.max_text_characters,
    )


def fallback_order(settings: SearchSettings) -> list[str]:
    """Default provider first, then the rest in fixed order."""
    default = settings.default_provider
    return [default, *(p for p in SEARCH_PROVIDER_ORDER if p != default)]


async def search_with_fallback(
    query: str,
    options: SearchOptions | None = None,
    providers: Sequence[str] | None = None,
    *,
    settings: SearchSettings,
    client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """Try each provider in turn and return the first success.

    Providers without a configured key are skipped. Raises ``SearchError``
    once every candidate has been skipped or has failed.
    """
    candidates = list(providers) if providers is not None else fallback_order(settings)
    last_error: BaseException | None = None

    for name in candidates:
        if not settings.has_api_key(name):
            logger.debug("Skipping search provider %s: no API key", name)
            continue
        try:
            adapter = get_search_adapter(name, settings, client=client)
            return await adapter.search(query, options)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Search provider %s failed: %s", name, e)
            last_error = e

    if last_error is None:
        raise SearchError("All search providers failed", "search")
    raise SearchError(
        f"All search providers failed. Last error: {last_error}", "search"
    ) from last_error
