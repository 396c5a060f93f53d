"""Search result types and post-processing."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable

#: Provider-side maximum result counts.
PROVIDER_LIMITS: dict[str, int] = {
    "exa": 10,
    "tavily": 20,
    "brave": 20,
}

MAX_TEXT_CHARACTERS = 500


@dataclass(frozen=True)
class SearchOptions:
    max_results: int = 3
    scrape_content: bool = False
    include_domains: tuple[str, ...] = ()
    exclude_domains: tuple[str, ...] = ()
    #: YYYY-MM-DD
    start_published_date: str | None = None
    end_published_date: str | None = None

    def capped(self, provider: str) -> int:
        """Requested result count, capped at *provider*'s maximum."""
        return max(1, min(self.max_results, PROVIDER_LIMITS.get(provider, self.max_results)))


@dataclass(frozen=True)
class SearchResult:
    url: str
    title: str
    description: str
    content: str | None = None
    markdown: str = field(default="", compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "markdown": self.markdown,
        }
        if self.content is not None:
            data["content"] = self.content
        return data


@runtime_checkable
class SearchAdapter(Protocol):
    """One web search backend."""

    name: str

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[SearchResult]: ...


def truncate_content(content: str, max_length: int = MAX_TEXT_CHARACTERS) -> str:
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."


def format_markdown(
    title: str,
    url: str,
    description: str,
    content: str | None = None,
    *,
    max_length: int = MAX_TEXT_CHARACTERS,
) -> str:
    """``### [title](url)`` heading, description, optional quoted content."""
    markdown = f"### [{title or 'Untitled'}]({url or '#'})\n{description}"
    if content:
        markdown += f"\n\n> {truncate_content(content, max_length)}"
    return markdown


def make_result(
    *,
    url: str | None,
    title: str | None,
    description: str | None,
    content: str | None,
    include_content: bool,
    max_length: int = MAX_TEXT_CHARACTERS,
) -> SearchResult:
    """Build a result with truncated content and derived markdown."""
    kept = truncate_content(content, max_length) if include_content and content else None
    return SearchResult(
        url=url or "",
        title=title or "",
        description=description or "",
        content=kept,
        markdown=format_markdown(
            title or "", url or "", description or "", kept, max_length=max_length
        ),
    )


def process_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Re-truncate content and fill in markdown where an adapter left it empty."""
    processed: list[SearchResult] = []
    for r in results:
        content = truncate_content(r.content) if r.content else None
        processed.append(
            replace(
                r,
                content=content,
                markdown=r.markdown
                or format_markdown(r.title, r.url, r.description, content),
            )
        )
    return processed
