"""Tavily search adapter."""

from __future__ import annotations

from typing import Any

from castor.search._http import HttpSearchAdapter
from castor.search.types import SearchOptions, SearchResult, make_result

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
_MAX_CHUNKS = 8
_DEFAULT_CHUNKS = 3


class TavilySearchAdapter(HttpSearchAdapter):
    name = "tavily"

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        body: dict[str, Any] = {
            "query": query,
            "max_results": options.capped(self.name),
            "search_depth": "advanced" if options.scrape_content else "basic",
            "include_raw_content": options.scrape_content,
            "chunks_per_source": _MAX_CHUNKS if options.scrape_content else _DEFAULT_CHUNKS,
        }
        if options.include_domains:
            body["include_domains"] = list(options.include_domains)
        if options.exclude_domains:
            body["exclude_domains"] = list(options.exclude_domains)
        if options.start_published_date:
            body["start_date"] = options.start_published_date
        if options.end_published_date:
            body["end_date"] = options.end_published_date

        data = await self._request_json(
            "POST",
            TAVILY_SEARCH_URL,
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return [
            make_result(
                url=item.get("url"),
                title=item.get("title"),
                description=item.get("content"),
                content=item.get("raw_content"),
                include_content=options.scrape_content,
                max_length=self.max_text_characters,
            )
            for item in data.get("results") or []
            if isinstance(item, dict)
        ]
