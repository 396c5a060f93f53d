"""Provider characterization tests.

These tests pin the request shapes each provider sends and the stream parts
it produces from SDK events. Fake clients stand in for the SDKs, so no
network calls are made.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from castor.errors import APIError, ConfigurationError, RateLimitError
from castor.providers import get_provider
from castor.providers._errors import extract_retry_after_s, wrap_provider_error
from castor.providers.anthropic import AnthropicProvider, _build_messages
from castor.providers.gemini import _build_contents
from castor.providers.mock import MockProvider
from castor.providers.models import (
    Message,
    ProviderRequest,
    ReasoningDelta,
    StepFinish,
    TextDelta,
    ToolCall,
    ToolCallPart,
)
from castor.providers.openai import OpenAIProvider
from castor.providers.openrouter import OpenRouterProvider
from castor.types import Attachment

pytestmark = pytest.mark.contract


async def _aiter(items: list[Any]):
    for item in items:
        yield item


async def _collect(provider: Any, request: ProviderRequest) -> list[Any]:
    return [part async for part in provider.stream(request)]


def _request(**kwargs: Any) -> ProviderRequest:
    kwargs.setdefault("model", "test-model")
    kwargs.setdefault("messages", [Message(role="user", content="Hi")])
    return ProviderRequest(**kwargs)


# =============================================================================
# Dispatch
# =============================================================================


def test_get_provider_dispatches_by_tag() -> None:
    assert isinstance(get_provider("openai", "sk"), OpenAIProvider)
    assert isinstance(get_provider("openrouter", "sk"), OpenRouterProvider)
    assert isinstance(get_provider("mock", None), MockProvider)


def test_get_provider_requires_a_key() -> None:
    with pytest.raises(ConfigurationError, match="openai API key is missing") as exc:
        get_provider("openai", None)

    assert exc.value.hint and "OPENAI_API_KEY" in exc.value.hint


def test_get_provider_rejects_unknown_tag() -> None:
    with pytest.raises(ConfigurationError, match="Unknown provider"):
        get_provider("cohere", "sk")  # type: ignore[arg-type]


# =============================================================================
# Provider Error Mapping
# =============================================================================


def test_wrap_provider_error_extracts_status_and_retry_after() -> None:
    class _Resp:
        status_code = 429
        headers = {"Retry-After": "2"}

    class _SdkError(Exception):
        def __init__(self) -> None:
            super().__init__("rate limited")
            self.response = _Resp()

    err = wrap_provider_error(_SdkError(), provider="openai", phase="stream")

    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is True
    assert err.provider == "openai"
    assert "429" in str(err)


def test_wrap_provider_error_enriches_existing_api_error() -> None:
    base = APIError("bad request", retryable=False, status_code=400)

    wrapped = wrap_provider_error(base, provider="gemini", phase="stream")

    assert wrapped is base
    assert wrapped.retryable is False
    assert wrapped.provider == "gemini"
    assert wrapped.phase == "stream"


def test_wrap_provider_error_marks_transport_failures_retryable() -> None:
    err = wrap_provider_error(
        httpx.ConnectError("refused"), provider="anthropic", phase="stream"
    )

    assert err.retryable is True
    assert err.status_code is None


def test_auth_failures_get_an_env_var_hint() -> None:
    class _AuthError(Exception):
        status_code = 401

    err = wrap_provider_error(_AuthError("invalid key"), provider="anthropic", phase="stream")

    assert err.hint and "ANTHROPIC_API_KEY" in err.hint


def test_retry_info_from_gemini_error_details() -> None:
    class _GenaiError(Exception):
        details = {
            "error": {
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "8s"}
                ]
            }
        }

    assert extract_retry_after_s(_GenaiError()) == 8.0


# =============================================================================
# OpenAI (Responses API)
# =============================================================================


class _FakeResponses:
    def __init__(self, events: list[Any]) -> None:
        self.events = events
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any):
        self.calls.append(kwargs)
        return _aiter(self.events)


def _openai_with(events: list[Any]) -> tuple[OpenAIProvider, _FakeResponses]:
    provider = OpenAIProvider("sk")
    responses = _FakeResponses(events)
    client = MagicMock()
    client.responses = responses
    client.close = AsyncMock()
    provider._client = client
    return provider, responses


@pytest.mark.asyncio
async def test_openai_stream_maps_events_to_parts() -> None:
    events = [
        SimpleNamespace(type="response.reasoning_summary_text.delta", delta="hmm"),
        SimpleNamespace(type="response.output_text.delta", delta="Hello"),
        SimpleNamespace(
            type="response.output_item.done",
            item=SimpleNamespace(
                type="function_call", call_id="c1", name="search", arguments='{"query": "x"}'
            ),
        ),
        SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(
                status="completed",
                usage=SimpleNamespace(
                    input_tokens=7,
                    output_tokens=3,
                    output_tokens_details=SimpleNamespace(reasoning_tokens=2),
                ),
            ),
        ),
    ]
    provider, responses = _openai_with(events)

    parts = await _collect(
        provider,
        _request(
            system_instruction="Be brief.",
            tools=[{"name": "search", "description": "web", "parameters": {"type": "object"}}],
            provider_options={"reasoning": {"effort": "low", "summary": "detailed"}},
        ),
    )

    assert parts == [
        ReasoningDelta("hmm"),
        TextDelta("Hello"),
        ToolCallPart(ToolCall(id="c1", name="search", arguments={"query": "x"})),
        StepFinish(
            finish_reason="completed",
            usage={"input_tokens": 7, "output_tokens": 3, "reasoning_tokens": 2},
        ),
    ]
    [call] = responses.calls
    assert call["instructions"] == "Be brief."
    assert call["reasoning"] == {"effort": "low", "summary": "detailed"}
    assert call["tools"][0]["type"] == "function"
    assert call["tools"][0]["name"] == "search"


@pytest.mark.asyncio
async def test_openai_input_replays_tool_round_trip() -> None:
    provider, responses = _openai_with([])
    messages = [
        Message(
            role="user",
            content="Look",
            attachments=(Attachment(url="https://f/x.png", media_type="image/png"),),
        ),
        Message(role="assistant", tool_calls=(ToolCall("c1", "search", {"query": "q"}),)),
        Message(role="tool", content='{"count": 0}', tool_call_id="c1", tool_name="search"),
    ]

    parts = await _collect(provider, _request(messages=messages))

    assert parts == [StepFinish(finish_reason="stop")]
    items = responses.calls[0]["input"]
    assert items[0]["content"][1] == {"type": "input_image", "image_url": "https://f/x.png"}
    assert items[1]["type"] == "function_call"
    assert items[1]["arguments"] == '{"query": "q"}'
    assert items[2] == {"type": "function_call_output", "call_id": "c1", "output": '{"count": 0}'}


@pytest.mark.asyncio
async def test_openai_failed_event_raises_api_error() -> None:
    provider, _ = _openai_with(
        [SimpleNamespace(type="error", message="model overloaded")]
    )

    with pytest.raises(APIError, match="model overloaded"):
        await _collect(provider, _request())


@pytest.mark.asyncio
async def test_openai_sdk_errors_are_wrapped() -> None:
    provider = OpenAIProvider("sk")
    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=RuntimeError("socket closed"))
    provider._client = client

    with pytest.raises(APIError, match="OpenAI stream failed: socket closed") as exc:
        await _collect(provider, _request())

    assert exc.value.provider == "openai"
    assert exc.value.phase == "stream"


@pytest.mark.asyncio
async def test_openai_aclose_closes_client_once() -> None:
    provider, _ = _openai_with([])
    client = provider._client

    await provider.aclose()
    await provider.aclose()

    client.close.assert_awaited_once()


# =============================================================================
# Anthropic (Messages API)
# =============================================================================


class _FakeAnthropicStream:
    def __init__(self, events: list[Any], final: Any) -> None:
        self._events = events
        self._final = final

    async def __aenter__(self) -> _FakeAnthropicStream:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def __aiter__(self):
        return _aiter(self._events)

    async def get_final_message(self) -> Any:
        return self._final


@pytest.mark.asyncio
async def test_anthropic_stream_emits_deltas_then_tool_calls() -> None:
    final = SimpleNamespace(
        content=[
            SimpleNamespace(type="thinking", thinking="plan", signature="sig"),
            SimpleNamespace(type="tool_use", id="tu1", name="search", input={"query": "q"}),
        ],
        usage=SimpleNamespace(input_tokens=11, output_tokens=4),
        stop_reason="tool_use",
    )
    events = [
        SimpleNamespace(type="message_start"),
        SimpleNamespace(
            type="content_block_delta", delta=SimpleNamespace(type="thinking_delta", thinking="plan")
        ),
        SimpleNamespace(
            type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="Checking")
        ),
    ]
    provider = AnthropicProvider("sk")
    calls: list[dict[str, Any]] = []

    def _stream(**kwargs: Any) -> _FakeAnthropicStream:
        calls.append(kwargs)
        return _FakeAnthropicStream(events, final)

    client = MagicMock()
    client.messages.stream = _stream
    provider._client = client

    parts = await _collect(
        provider,
        _request(
            tools=[{"name": "search", "parameters": {"type": "object"}}],
            provider_options={"thinking": {"type": "enabled", "budget_tokens": 1024}},
        ),
    )

    assert parts[:3] == [
        ReasoningDelta("plan"),
        TextDelta("Checking"),
        ToolCallPart(ToolCall(id="tu1", name="search", arguments={"query": "q"})),
    ]
    finish = parts[3]
    assert finish.finish_reason == "tool_calls"
    assert finish.usage == {"input_tokens": 11, "output_tokens": 4}
    assert finish.provider_state is not None

    [kwargs] = calls
    assert kwargs["thinking"] == {"type": "enabled", "budget_tokens": 1024}
    assert kwargs["max_tokens"] > 1024
    assert kwargs["tools"][0]["input_schema"] == {"type": "object"}
    assert "anthropic-beta" in kwargs["extra_headers"]


def test_anthropic_messages_alternate_roles_and_replay_thinking() -> None:
    history = [
        Message(role="user", content="Hi"),
        Message(
            role="assistant",
            tool_calls=(ToolCall("tu1", "search", {"query": "q"}),),
            provider_state={
                "anthropic_thinking_blocks": [
                    {"type": "thinking", "thinking": "plan", "signature": "sig"}
                ]
            },
        ),
        Message(role="tool", content="r1", tool_call_id="tu1"),
        Message(role="user", content="And?"),
    ]

    messages = _build_messages(history)

    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert [b["type"] for b in messages[1]["content"]] == ["thinking", "tool_use"]
    assert [b["type"] for b in messages[2]["content"]] == ["tool_result", "text"]


# =============================================================================
# OpenRouter (Chat Completions)
# =============================================================================


def _chunk(content=None, reasoning=None, tool_calls=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, reasoning=reasoning, tool_calls=tool_calls)
    return SimpleNamespace(
        usage=usage,
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)],
    )


@pytest.mark.asyncio
async def test_openrouter_assembles_tool_call_fragments() -> None:
    chunks = [
        _chunk(reasoning="thinking"),
        _chunk(content="Let me look"),
        _chunk(
            tool_calls=[
                SimpleNamespace(
                    index=0, id="c1", function=SimpleNamespace(name="search", arguments='{"que')
                )
            ]
        ),
        _chunk(
            tool_calls=[
                SimpleNamespace(
                    index=0, id=None, function=SimpleNamespace(name=None, arguments='ry": "x"}')
                )
            ],
            finish_reason="tool_calls",
        ),
        SimpleNamespace(
            usage=SimpleNamespace(prompt_tokens=9, completion_tokens=6), choices=[]
        ),
    ]
    provider = OpenRouterProvider("sk")
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_aiter(chunks))
    client.close = AsyncMock()
    provider._client = client

    parts = await _collect(
        provider,
        _request(
            system_instruction="sys",
            provider_options={"reasoning": {"effort": "high"}},
        ),
    )

    assert parts == [
        ReasoningDelta("thinking"),
        TextDelta("Let me look"),
        ToolCallPart(ToolCall(id="c1", name="search", arguments={"query": "x"})),
        StepFinish(finish_reason="tool_calls", usage={"input_tokens": 9, "output_tokens": 6}),
    ]
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
    assert kwargs["extra_body"] == {"reasoning": {"effort": "high"}}
    assert kwargs["stream_options"] == {"include_usage": True}


# =============================================================================
# Gemini (content building)
# =============================================================================


def test_gemini_folds_consecutive_tool_results() -> None:
    history = [
        Message(role="user", content="Compare"),
        Message(
            role="assistant",
            tool_calls=(
                ToolCall("a", "search", {"query": "x"}),
                ToolCall("b", "search", {"query": "y"}),
            ),
        ),
        Message(role="tool", content='{"count": 1}', tool_call_id="a"),
        Message(role="tool", content="plain text", tool_call_id="b"),
    ]

    contents = _build_contents(history)

    assert [c.role for c in contents] == ["user", "model", "user"]
    responses = [p.function_response for p in contents[2].parts]
    assert [r.name for r in responses] == ["search", "search"]
    assert responses[0].response == {"count": 1}
    assert responses[1].response == {"result": "plain text"}
