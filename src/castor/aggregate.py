"""Response aggregation and persistence for one finished generation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from castor.types import (
    ReasoningSegment,
    TextSegment,
    ToolCallSegment,
    ToolInvocation,
    ToolResultSegment,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from castor.models import ModelDefinition
    from castor.store import ChatStore
    from castor.types import ResponseMessage, Usage

logger = logging.getLogger(__name__)

#: Nesting depth the message store accepts for persisted parts.
MAX_PART_DEPTH = 14


@dataclass
class AggregatedResponse:
    text: str = ""
    reasoning: str | None = None
    invocations: list[ToolInvocation] = field(default_factory=list)

    @property
    def parts(self) -> list[dict[str, Any]]:
        """Persisted parts: text, then reasoning if any, then tool invocations."""
        parts: list[dict[str, Any]] = [{"type": "text", "text": self.text}]
        if self.reasoning:
            parts.append({"type": "reasoning", "text": self.reasoning})
        parts.extend(inv.to_part() for inv in self.invocations)
        return parts


def aggregate_response(steps: Iterable[ResponseMessage]) -> AggregatedResponse:
    """Fold response steps into text, reasoning, and paired tool invocations.

    Assistant steps are read first so every call is known before results are
    matched. Only the first non-empty reasoning segment is kept. A result with
    no matching call is kept as an orphaned invocation.
    """
    steps = list(steps)
    response = AggregatedResponse()
    by_id: dict[str, int] = {}
    text_chunks: list[str] = []

    for step in steps:
        if step.role != "assistant":
            continue
        for segment in step.content:
            match segment:
                case TextSegment(text=text):
                    text_chunks.append(text)
                case ReasoningSegment(text=text):
                    if text and response.reasoning is None:
                        response.reasoning = text
                case ToolCallSegment():
                    by_id[segment.tool_call_id] = len(response.invocations)
                    response.invocations.append(
                        ToolInvocation(
                            tool_call_id=segment.tool_call_id,
                            tool_name=segment.tool_name,
                            state="call",
                            args=dict(segment.args),
                        )
                    )

    for step in steps:
        if step.role != "tool":
            continue
        for segment in step.content:
            if not isinstance(segment, ToolResultSegment):
                continue
            index = by_id.get(segment.tool_call_id)
            if index is not None:
                invocation = response.invocations[index]
                invocation.state = "result"
                invocation.result = segment.result
            else:
                logger.debug("Orphaned tool result for %s", segment.tool_call_id)
                response.invocations.append(
                    ToolInvocation(
                        tool_call_id=segment.tool_call_id,
                        tool_name=segment.tool_name,
                        state="result",
                        result=segment.result,
                        orphaned=True,
                    )
                )

    response.text = "".join(text_chunks)
    return response


def limit_depth(value: Any, max_depth: int = MAX_PART_DEPTH, _depth: int = 0) -> Any:
    """Replace containers nested deeper than *max_depth* with a marker."""
    if isinstance(value, dict):
        if _depth >= max_depth:
            return {"_truncated": True, "_type": "object", "_depth": _depth}
        return {k: limit_depth(v, max_depth, _depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        if _depth >= max_depth:
            return {"_truncated": True, "_type": "array", "_depth": _depth}
        return [limit_depth(v, max_depth, _depth + 1) for v in value]
    return value


def build_metadata(
    model: ModelDefinition,
    *,
    enable_search: bool,
    reasoning_effort: str | None,
) -> dict[str, Any]:
    """Metadata shared by assistant and error messages."""
    return {
        "modelId": model.id,
        "modelName": model.name,
        "includeSearch": enable_search,
        "reasoningEffort": reasoning_effort or "none",
    }


async def persist_response(
    store: ChatStore,
    aggregated: AggregatedResponse,
    *,
    chat_id: str,
    parent_message_id: str | None,
    model: ModelDefinition,
    used_user_key: bool,
    metadata: dict[str, Any],
    usage: Usage | None = None,
    duration_ms: int | None = None,
) -> str | None:
    """Save the assistant message and bump exactly one usage counter.

    Failures are logged and swallowed: the client already has the streamed
    response, and nothing here is retried.
    """
    final_metadata = dict(metadata)
    if duration_ms is not None:
        final_metadata["serverDurationMs"] = duration_ms
    if usage is not None:
        final_metadata.update(
            inputTokens=usage.input_tokens,
            outputTokens=usage.output_tokens,
            reasoningTokens=usage.reasoning_tokens,
            totalTokens=usage.total_tokens,
        )

    try:
        message_id = await store.save_assistant_message(
            chat_id=chat_id,
            content=aggregated.text,
            parent_message_id=parent_message_id,
            parts=limit_depth(aggregated.parts),
            metadata=final_metadata,
        )
        if used_user_key:
            await store.increment_user_api_key_usage(model.provider)
        elif not model.skip_rate_limit:
            await store.increment_message_count(
                uses_premium_credits=model.uses_premium_credits
            )
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("Failed to persist assistant message for chat %s: %s", chat_id, e)
        return None
    return message_id
