"""OpenRouter provider over the OpenAI-compatible chat completions API."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import APIError
from castor.providers._errors import wrap_provider_error
from castor.providers.models import (
    Message,
    ProviderRequest,
    ReasoningDelta,
    StepFinish,
    StreamPart,
    TextDelta,
    ToolCall,
    ToolCallPart,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider:
    """OpenRouter provider (streaming chat completions)."""

    name = "openrouter"

    def __init__(self, api_key: str, *, base_url: str = OPENROUTER_BASE_URL) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self.base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize an OpenAI client pointed at OpenRouter."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def _build_kwargs(self, request: ProviderRequest) -> dict[str, Any]:
        create_kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": _build_messages(request.messages, request.system_instruction),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.tools:
            create_kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("parameters", {"type": "object"}),
                    },
                }
                for t in request.tools
                if "name" in t
            ]
        reasoning = request.provider_options.get("reasoning")
        if reasoning is not None:
            create_kwargs["extra_body"] = {"reasoning": dict(reasoning)}
        return create_kwargs

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Stream one step; tool call fragments are assembled by index."""
        client = self._get_client()
        create_kwargs = self._build_kwargs(request)

        pending: dict[int, dict[str, str]] = {}
        usage: dict[str, int] = {}
        finish_reason: str | None = None
        try:
            chunks = await client.chat.completions.create(**create_kwargs)
            async for chunk in chunks:
                usage_raw = getattr(chunk, "usage", None)
                if usage_raw is not None:
                    usage = {
                        "input_tokens": int(getattr(usage_raw, "prompt_tokens", 0) or 0),
                        "output_tokens": int(
                            getattr(usage_raw, "completion_tokens", 0) or 0
                        ),
                    }
                for choice in getattr(chunk, "choices", None) or []:
                    if choice.finish_reason:
                        finish_reason = str(choice.finish_reason)
                    delta = choice.delta
                    if delta is None:
                        continue
                    # OpenRouter adds a non-standard ``reasoning`` field.
                    reasoning = getattr(delta, "reasoning", None)
                    if isinstance(reasoning, str) and reasoning:
                        yield ReasoningDelta(reasoning)
                    if delta.content:
                        yield TextDelta(delta.content)
                    for tc in delta.tool_calls or []:
                        slot = pending.setdefault(
                            tc.index, {"id": "", "name": "", "arguments": ""}
                        )
                        if tc.id:
                            slot["id"] = tc.id
                        fn = tc.function
                        if fn is not None:
                            if fn.name:
                                slot["name"] += fn.name
                            if fn.arguments:
                                slot["arguments"] += fn.arguments
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="openrouter",
                phase="stream",
                message="OpenRouter stream failed",
            ) from e

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCallPart(
                ToolCall(
                    id=slot["id"] or f"call_{index}",
                    name=slot["name"],
                    arguments=_parse_arguments(slot["arguments"]),
                )
            )
        yield StepFinish(finish_reason=finish_reason, usage=usage)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _build_messages(
    messages: list[Message], system_instruction: str | None
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    if system_instruction:
        out.append({"role": "system", "content": system_instruction})
    for m in messages:
        if m.role == "tool":
            out.append(
                {"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content}
            )
        elif m.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": m.content or None}
            if m.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in m.tool_calls
                ]
            out.append(entry)
        elif m.attachments:
            content: list[dict[str, Any]] = []
            if m.content:
                content.append({"type": "text", "text": m.content})
            for att in m.attachments:
                if att.media_type and att.media_type.startswith("image/"):
                    content.append({"type": "image_url", "image_url": {"url": att.url}})
            out.append({"role": "user", "content": content or m.content})
        else:
            out.append({"role": "user", "content": m.content})
    return out


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Discarding unparseable tool arguments: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}
