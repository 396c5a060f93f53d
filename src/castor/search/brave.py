"""Brave Search adapter."""

from __future__ import annotations

from typing import Any

from castor.search._http import HttpSearchAdapter
from castor.search.types import SearchOptions, SearchResult, make_result

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveSearchAdapter(HttpSearchAdapter):
    name = "brave"

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        params: list[tuple[str, str]] = [
            ("q", query),
            ("count", str(options.capped(self.name))),
            ("safesearch", "moderate"),
            ("search_lang", "en"),
            ("country", "US"),
        ]
        if options.include_domains:
            params.append(("site", " OR site:".join(options.include_domains)))
        if options.exclude_domains:
            params.append(("exclude", " -site:".join(options.exclude_domains)))

        data = await self._request_json(
            "GET",
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
            },
        )
        web: Any = data.get("web") or {}
        return [
            self._to_result(item, options.scrape_content)
            for item in web.get("results") or []
            if isinstance(item, dict)
        ]

    def _to_result(self, item: dict[str, Any], include_content: bool) -> SearchResult:
        # Brave has no page scraping; the description doubles as content.
        description = item.get("description") or item.get("snippet") or ""
        return make_result(
            url=item.get("url"),
            title=item.get("title"),
            description=description,
            content=description,
            include_content=include_content,
            max_length=self.max_text_characters,
        )
