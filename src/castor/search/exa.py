"""Exa search adapter."""

from __future__ import annotations

from typing import Any

from castor.search._http import HttpSearchAdapter
from castor.search.types import SearchOptions, SearchResult, make_result

EXA_SEARCH_URL = "https://api.exa.ai/search"


class ExaSearchAdapter(HttpSearchAdapter):
    name = "exa"

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        body: dict[str, Any] = {
            "query": query,
            "numResults": options.capped(self.name),
            "type": "auto",
        }
        if options.scrape_content:
            body["contents"] = {"text": {"maxCharacters": self.max_text_characters}}
        if options.include_domains:
            body["includeDomains"] = list(options.include_domains)
        if options.exclude_domains:
            body["excludeDomains"] = list(options.exclude_domains)
        if options.start_published_date:
            body["startPublishedDate"] = options.start_published_date
        if options.end_published_date:
            body["endPublishedDate"] = options.end_published_date

        data = await self._request_json(
            "POST",
            EXA_SEARCH_URL,
            json=body,
            headers={"x-api-key": self.api_key},
        )
        return [
            make_result(
                url=item.get("url"),
                title=item.get("title"),
                description=item.get("snippet") or item.get("summary"),
                content=item.get("text"),
                include_content=options.scrape_content,
                max_length=self.max_text_characters,
            )
            for item in data.get("results") or []
            if isinstance(item, dict)
        ]
