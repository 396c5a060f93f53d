"""Shared HTTP plumbing for search adapters."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from castor.errors import (
    SearchAuthenticationError,
    SearchError,
    SearchInvalidResponseError,
    SearchNetworkError,
    SearchRateLimitError,
)
from castor.search.types import MAX_TEXT_CHARACTERS

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0


def handle_search_error(exc: BaseException, provider: str) -> SearchError:
    """Map an httpx or parsing failure into the ``SearchError`` family."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, SearchError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = f"{status} {exc.response.reason_phrase}".strip()
        if status in (401, 403):
            return SearchAuthenticationError(provider, message)
        if status == 429:
            return SearchRateLimitError(provider, message)
        return SearchError(message, provider)
    if isinstance(exc, httpx.TransportError):
        return SearchNetworkError(provider, str(exc) or type(exc).__name__)
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return SearchInvalidResponseError(provider, str(exc) or "Invalid response format")
    return SearchError(str(exc) or "Unknown error occurred", provider)


class HttpSearchAdapter:
    """Base for adapters that talk JSON over HTTP.

    A shared ``httpx.AsyncClient`` may be injected; otherwise each search opens
    and closes its own.
    """

    name = "http"

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_text_characters: int = MAX_TEXT_CHARACTERS,
    ) -> None:
        if not api_key:
            raise SearchAuthenticationError(self.name, "API key is required")
        self.api_key = api_key
        self._client = client
        self._timeout_s = timeout_s
        self.max_text_characters = max_text_characters

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise SearchInvalidResponseError(self.name, "Expected a JSON object")
            return data
        except asyncio.CancelledError:
            raise
        except Exception as e:
            err = handle_search_error(e, self.name)
            logger.debug("Search request failed: %s", err)
            raise err from e
