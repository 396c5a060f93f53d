"""Anthropic Messages API provider."""

from __future__ import annotations

import asyncio
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

_ANTHROPIC_MAX_TOKENS = 8192
_INTERLEAVED_THINKING_BETA_HEADER = "interleaved-thinking-2025-05-14"
_ANTHROPIC_THINKING_BLOCKS_KEY = "anthropic_thinking_blocks"


class AnthropicProvider:
    """Anthropic Messages API provider (streaming)."""

    name = "anthropic"

    def __init__(self, api_key: str) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    @staticmethod
    def _normalize_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert tool dicts to Anthropic format (parameters → input_schema)."""
        anthropic_tools: list[dict[str, Any]] = []
        for t in tools:
            if "name" in t:
                tool_def: dict[str, Any] = {
                    "name": t["name"],
                    "input_schema": t.get("parameters", {"type": "object"}),
                }
                if "description" in t:
                    tool_def["description"] = t["description"]
                anthropic_tools.append(tool_def)
        return anthropic_tools

    def _build_kwargs(self, request: ProviderRequest) -> dict[str, Any]:
        stream_kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": _build_messages(request.messages),
            "max_tokens": _ANTHROPIC_MAX_TOKENS,
        }
        if request.system_instruction:
            stream_kwargs["system"] = request.system_instruction
        if request.tools:
            anthropic_tools = self._normalize_tools(request.tools)
            if anthropic_tools:
                stream_kwargs["tools"] = anthropic_tools

        thinking = request.provider_options.get("thinking")
        if thinking is not None:
            stream_kwargs["thinking"] = dict(thinking)
            # max_tokens must exceed the thinking budget.
            stream_kwargs["max_tokens"] = _ANTHROPIC_MAX_TOKENS + int(
                thinking.get("budget_tokens", 0)
            )
            if request.tools:
                stream_kwargs["extra_headers"] = {
                    "anthropic-beta": _INTERLEAVED_THINKING_BETA_HEADER
                }
        return stream_kwargs

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Stream one step using Anthropic's Messages API."""
        client = self._get_client()
        stream_kwargs = self._build_kwargs(request)

        try:
            async with client.messages.stream(**stream_kwargs) as stream:
                async for event in stream:
                    if getattr(event, "type", None) != "content_block_delta":
                        continue
                    delta = event.delta
                    delta_type = getattr(delta, "type", None)
                    if delta_type == "text_delta":
                        yield TextDelta(delta.text)
                    elif delta_type == "thinking_delta":
                        yield ReasoningDelta(delta.thinking)
                final = await stream.get_final_message()
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="anthropic",
                phase="stream",
                message="Anthropic stream failed",
            ) from e

        for call in _tool_calls(final):
            yield ToolCallPart(call)
        yield _finish_from_message(final)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _tool_calls(message: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for block in getattr(message, "content", []):
        if getattr(block, "type", None) == "tool_use":
            args = getattr(block, "input", None)
            calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=args if isinstance(args, dict) else {},
                )
            )
    return calls


def _finish_from_message(message: Any) -> StepFinish:
    """Extract usage, stop reason, and replayable thinking blocks."""
    thinking_blocks: list[dict[str, str]] = []
    for block in getattr(message, "content", []):
        block_type = getattr(block, "type", None)
        if block_type == "thinking":
            thinking = getattr(block, "thinking", "")
            signature = getattr(block, "signature", None)
            if isinstance(thinking, str) and isinstance(signature, str):
                thinking_blocks.append(
                    {"type": "thinking", "thinking": thinking, "signature": signature}
                )
        elif block_type == "redacted_thinking":
            data = getattr(block, "data", None)
            if isinstance(data, str):
                thinking_blocks.append({"type": "redacted_thinking", "data": data})

    usage: dict[str, int] = {}
    usage_raw = getattr(message, "usage", None)
    if usage_raw is not None:
        usage = {
            "input_tokens": int(getattr(usage_raw, "input_tokens", 0) or 0),
            "output_tokens": int(getattr(usage_raw, "output_tokens", 0) or 0),
        }

    return StepFinish(
        finish_reason=_normalize_stop_reason(getattr(message, "stop_reason", None)),
        usage=usage,
        provider_state=(
            {_ANTHROPIC_THINKING_BLOCKS_KEY: thinking_blocks}
            if thinking_blocks
            else None
        ),
    )


def _normalize_stop_reason(stop_reason: Any) -> str | None:
    """Map Anthropic stop_reason to a normalized lowercase string."""
    if stop_reason is None:
        return None
    reason = str(stop_reason).lower()

    mapping: dict[str, str] = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "max_tokens",
        "tool_use": "tool_calls",
    }
    return mapping.get(reason, reason)


def _thinking_blocks_for_replay(
    provider_state: dict[str, Any] | None,
) -> list[dict[str, str]]:
    """Return sanitized thinking blocks to replay in Anthropic tool loops."""
    if provider_state is None:
        return []
    raw_blocks = provider_state.get(_ANTHROPIC_THINKING_BLOCKS_KEY)
    if not isinstance(raw_blocks, list):
        return []
    return [
        dict(raw)
        for raw in raw_blocks
        if isinstance(raw, dict)
        and raw.get("type") in ("thinking", "redacted_thinking")
    ]


def _build_messages(history: list[Message]) -> list[dict[str, Any]]:
    """Build the messages list, merging consecutive same-role turns."""
    messages: list[dict[str, Any]] = []
    for item in history:
        if item.role == "tool":
            if not item.tool_call_id:
                continue
            _append_message(
                messages,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": item.tool_call_id,
                            "content": item.content or "",
                        }
                    ],
                },
            )
        elif item.role == "assistant":
            # Thinking blocks must precede tool_use blocks in the same turn.
            content_blocks: list[dict[str, Any]] = list(
                _thinking_blocks_for_replay(item.provider_state)
            )
            if item.content:
                content_blocks.append({"type": "text", "text": item.content})
            for tc in item.tool_calls:
                content_blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    }
                )
            if content_blocks:
                _append_message(
                    messages, {"role": "assistant", "content": content_blocks}
                )
        else:
            user_content: list[dict[str, Any]] = [
                block
                for att in item.attachments
                if (block := _attachment_block(att.url, att.media_type)) is not None
            ]
            if item.content:
                user_content.append({"type": "text", "text": item.content})
            if user_content:
                _append_message(messages, {"role": "user", "content": user_content})

    if not messages:
        messages.append({"role": "user", "content": [{"type": "text", "text": ""}]})
    return messages


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _attachment_block(url: str, media_type: str | None) -> dict[str, Any] | None:
    """Convert an attachment URL into an Anthropic content block."""
    if media_type and media_type.startswith("image/"):
        return {"type": "image", "source": {"type": "url", "url": url}}
    if media_type == "application/pdf":
        return {"type": "document", "source": {"type": "url", "url": url}}
    return None
