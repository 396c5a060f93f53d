"""OpenAI provider implementation."""

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


class OpenAIProvider:
    """OpenAI Responses API provider (streaming)."""

    name = "openai"

    def __init__(self, api_key: str) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _build_kwargs(self, request: ProviderRequest) -> dict[str, Any]:
        create_kwargs: dict[str, Any] = {
            "model": request.model,
            "input": _build_input(request.messages),
            "stream": True,
        }
        if request.system_instruction:
            create_kwargs["instructions"] = request.system_instruction
        if request.tools:
            create_kwargs["tools"] = [
                {
                    "type": "function",
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("parameters", {"type": "object"}),
                    "strict": False,
                }
                for t in request.tools
                if "name" in t
            ]
        reasoning = request.provider_options.get("reasoning")
        if reasoning is not None:
            create_kwargs["reasoning"] = dict(reasoning)
        return create_kwargs

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Stream one step from the responses endpoint."""
        client = self._get_client()
        create_kwargs = self._build_kwargs(request)

        try:
            events = await client.responses.create(**create_kwargs)
            finish: StepFinish | None = None
            async for event in events:
                event_type = getattr(event, "type", None)
                if event_type == "response.output_text.delta":
                    yield TextDelta(event.delta)
                elif event_type in (
                    "response.reasoning_summary_text.delta",
                    "response.reasoning_text.delta",
                ):
                    yield ReasoningDelta(event.delta)
                elif event_type == "response.output_item.done":
                    item = event.item
                    if getattr(item, "type", None) == "function_call":
                        yield ToolCallPart(
                            ToolCall(
                                id=item.call_id,
                                name=item.name,
                                arguments=_parse_arguments(item.arguments),
                            )
                        )
                elif event_type in ("response.completed", "response.incomplete"):
                    finish = _finish_from_response(event.response)
                elif event_type in ("response.failed", "error"):
                    raise APIError(
                        _event_error_message(event),
                        provider="openai",
                        phase="stream",
                    )
            yield finish or StepFinish(finish_reason="stop")
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="openai",
                phase="stream",
                message="OpenAI stream failed",
            ) from e

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _build_input(messages: list[Message]) -> list[dict[str, Any]]:
    """Translate history into Responses API input items."""
    items: list[dict[str, Any]] = []
    for m in messages:
        if m.role == "tool":
            if not m.tool_call_id:
                continue
            items.append(
                {
                    "type": "function_call_output",
                    "call_id": m.tool_call_id,
                    "output": m.content,
                }
            )
            continue

        if m.role == "assistant":
            if m.content:
                items.append(
                    {
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": m.content}],
                    }
                )
            for tc in m.tool_calls:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": tc.id,
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    }
                )
            continue

        content: list[dict[str, Any]] = []
        if m.content:
            content.append({"type": "input_text", "text": m.content})
        for att in m.attachments:
            if att.media_type and att.media_type.startswith("image/"):
                content.append({"type": "input_image", "image_url": att.url})
            else:
                content.append({"type": "input_file", "file_url": att.url})
        if not content:
            content.append({"type": "input_text", "text": ""})
        items.append({"role": "user", "content": content})
    return items


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding unparseable tool arguments: %r", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _finish_from_response(response: Any) -> StepFinish:
    """Build the terminal step part from a completed response object."""
    usage: dict[str, int] = {}
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        usage = {
            "input_tokens": int(getattr(usage_raw, "input_tokens", 0) or 0),
            "output_tokens": int(getattr(usage_raw, "output_tokens", 0) or 0),
        }
        out_details = getattr(usage_raw, "output_tokens_details", None)
        reasoning_toks = getattr(out_details, "reasoning_tokens", None)
        if reasoning_toks is not None:
            usage["reasoning_tokens"] = int(reasoning_toks)

    return StepFinish(finish_reason=_extract_finish_reason(response), usage=usage)


def _extract_finish_reason(response: Any) -> str | None:
    """Extract the finish reason, preferring ``incomplete_details.reason``."""
    status = getattr(response, "status", None)
    if not isinstance(status, str):
        return None

    normalized_status = status.lower()
    if normalized_status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details is not None else None
        if isinstance(reason, str) and reason:
            return reason.lower()

    return normalized_status


def _event_error_message(event: Any) -> str:
    message = getattr(event, "message", None)
    if isinstance(message, str) and message:
        return message
    error = getattr(getattr(event, "response", None), "error", None)
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return "OpenAI response generation failed"
