"""The ``search`` tool exposed to models."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.search.factory import search_with_fallback
from castor.search.types import SearchOptions, process_results

if TYPE_CHECKING:
    from collections.abc import Mapping

    import httpx

    from castor.config import SearchSettings

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search"

SEARCH_TOOL_DESCRIPTION = (
    "Search the web for current information and facts. Use this when you need "
    "to verify current facts, find recent events, or get real-time data."
)

SEARCH_TOOL_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
        "maxResults": {
            "type": "integer",
            "description": "Maximum number of results to return",
            "default": 3,
        },
        "scrapeContent": {
            "type": "boolean",
            "description": "Whether to include scraped content from the pages",
            "default": True,
        },
        "includeDomains": {
            "type": "array",
            "items": {"type": "string"},
            "description": "List of domains to include in search",
        },
        "excludeDomains": {
            "type": "array",
            "items": {"type": "string"},
            "description": "List of domains to exclude from search",
        },
        "startPublishedDate": {
            "type": "string",
            "description": "Start date for published results (YYYY-MM-DD)",
        },
        "endPublishedDate": {
            "type": "string",
            "description": "End date for published results (YYYY-MM-DD)",
        },
    },
    "required": ["query"],
}


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v)


class SearchTool:
    """Web search with provider fallback; failures become tool output."""

    name = SEARCH_TOOL_NAME

    def __init__(
        self, settings: SearchSettings, *, client: httpx.AsyncClient | None = None
    ) -> None:
        self.settings = settings
        self._client = client

    @property
    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": SEARCH_TOOL_DESCRIPTION,
            "parameters": SEARCH_TOOL_PARAMETERS,
        }

    def options_from_args(self, args: Mapping[str, Any]) -> SearchOptions:
        max_results = args.get("maxResults")
        scrape = args.get("scrapeContent")
        return SearchOptions(
            max_results=max_results
            if isinstance(max_results, int) and max_results > 0
            else self.settings.max_results,
            scrape_content=scrape if isinstance(scrape, bool) else self.settings.scrape_content,
            include_domains=_str_tuple(args.get("includeDomains")),
            exclude_domains=_str_tuple(args.get("excludeDomains")),
            start_published_date=args.get("startPublishedDate") or None,
            end_published_date=args.get("endPublishedDate") or None,
        )

    async def execute(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """Run the search; never raises except on cancellation."""
        query = str(args.get("query") or "")
        try:
            results = await search_with_fallback(
                query,
                self.options_from_args(args),
                settings=self.settings,
                client=self._client,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Search tool failed for %r: %s", query, e)
            return {
                "success": False,
                "query": query,
                "results": [],
                "count": 0,
                "error": str(e) or "Unknown error occurred",
            }
        processed = process_results(results)
        return {
            "success": True,
            "query": query,
            "results": [r.to_dict() for r in processed],
            "count": len(processed),
        }
