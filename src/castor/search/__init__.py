"""Web search adapters and the model-facing search tool."""

from castor.search.factory import fallback_order, get_search_adapter, search_with_fallback
from castor.search.tool import SEARCH_TOOL_NAME, SearchTool
from castor.search.types import (
    SearchAdapter,
    SearchOptions,
    SearchResult,
    format_markdown,
    process_results,
    truncate_content,
)

__all__ = [
    "SEARCH_TOOL_NAME",
    "SearchAdapter",
    "SearchOptions",
    "SearchResult",
    "SearchTool",
    "fallback_order",
    "format_markdown",
    "get_search_adapter",
    "process_results",
    "search_with_fallback",
    "truncate_content",
]
