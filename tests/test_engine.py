"""Streaming execution engine tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from castor.engine import StreamSession, stream_text, to_provider_messages
from castor.errors import APIError
from castor.providers.mock import MockProvider
from castor.providers.models import (
    Message,
    StepFinish,
    TextDelta,
    ToolCall,
    ToolCallPart,
)
from castor.request import UIMessage
from tests.helpers import text_step, weather_script

pytestmark = pytest.mark.unit


class EchoTool:
    name = "search"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    @property
    def definition(self) -> dict[str, Any]:
        return {"name": self.name, "description": "echo", "parameters": {"type": "object"}}

    async def execute(self, args):
        self.calls.append(dict(args))
        return {"success": True, "query": args.get("query"), "results": [], "count": 0}


def _session(**kwargs: Any) -> StreamSession:
    return StreamSession(messages=[Message(role="user", content="Hi")], **kwargs)


async def _collect(handle) -> list[dict[str, Any]]:
    return [chunk async for chunk in handle.events()]


@pytest.mark.asyncio
async def test_single_step_text_stream() -> None:
    provider = MockProvider([text_step("Hello", input_tokens=3, output_tokens=1)])
    finished: list[StreamSession] = []

    async def on_finish(session: StreamSession) -> None:
        finished.append(session)

    handle = await stream_text(provider, _session(), model="m", on_finish=on_finish)
    chunks = await _collect(handle)

    assert [c["type"] for c in chunks] == ["start", "text-delta", "finish-step", "finish"]
    assert chunks[1]["delta"] == "Hello"
    [session] = finished
    assert session.text == "Hello"
    assert session.usage.total_tokens == 4
    assert provider.closed is True


@pytest.mark.asyncio
async def test_tool_loop_runs_tool_and_second_step() -> None:
    provider = MockProvider(weather_script())
    tool = EchoTool()

    handle = await stream_text(provider, _session(), model="m", tools={"search": tool})
    chunks = await _collect(handle)

    assert [c["type"] for c in chunks] == [
        "start",
        "reasoning-delta",
        "tool-input-available",
        "finish-step",
        "tool-output-available",
        "text-delta",
        "text-delta",
        "finish-step",
        "finish",
    ]
    assert tool.calls == [{"query": "Paris weather"}]
    session = handle.session
    assert [s.role for s in session.steps] == ["assistant", "tool", "assistant"]
    assert session.text == "It is 18°C and sunny."

    second_request = provider.requests[1]
    assert [m.role for m in second_request.messages] == ["user", "assistant", "tool"]
    assert json.loads(second_request.messages[-1].content)["query"] == "Paris weather"
    assert second_request.tools[0]["name"] == "search"


@pytest.mark.asyncio
async def test_step_limit_stops_tool_loop() -> None:
    looping = [
        [ToolCallPart(ToolCall(id=f"t{i}", name="search", arguments={})), StepFinish()]
        for i in range(5)
    ]
    provider = MockProvider(looping)

    handle = await stream_text(
        provider, _session(), model="m", tools={"search": EchoTool()}, max_steps=2
    )
    await handle.wait()

    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_pre_stream_failure_raises_from_start() -> None:
    provider = MockProvider([[APIError("boom", status_code=500)]])

    with pytest.raises(APIError, match="boom"):
        await stream_text(provider, _session(), model="m")

    assert provider.closed is True


@pytest.mark.asyncio
async def test_mid_stream_failure_invokes_on_error_and_on_finish() -> None:
    provider = MockProvider([[TextDelta("partial"), RuntimeError("Request timed out")]])
    errors: list[BaseException] = []
    finished: list[StreamSession] = []

    async def on_error(exc: BaseException, session: StreamSession) -> str:
        errors.append(exc)
        return "custom error text"

    async def on_finish(session: StreamSession) -> None:
        finished.append(session)

    handle = await stream_text(
        provider, _session(), model="m", on_error=on_error, on_finish=on_finish
    )
    chunks = await _collect(handle)

    assert chunks[-1] == {"type": "error", "errorText": "custom error text"}
    assert len(errors) == 1
    assert finished[0].error is errors[0]


@pytest.mark.asyncio
async def test_abort_terminates_normally_and_still_finishes() -> None:
    abort = asyncio.Event()
    abort.set()
    provider = MockProvider([[TextDelta("a"), TextDelta("b"), StepFinish()]])
    finished: list[StreamSession] = []

    async def on_finish(session: StreamSession) -> None:
        finished.append(session)

    handle = await stream_text(provider, _session(), model="m", on_finish=on_finish, abort=abort)
    chunks = await _collect(handle)

    assert chunks[-1]["type"] == "finish"
    assert finished[0].aborted is True
    assert "text-delta" not in [c["type"] for c in chunks]


@pytest.mark.asyncio
async def test_generation_completes_without_a_reader() -> None:
    provider = MockProvider([text_step("done")])
    finished = asyncio.Event()

    async def on_finish(session: StreamSession) -> None:
        finished.set()

    handle = await stream_text(provider, _session(), model="m", on_finish=on_finish)
    handle.launch()

    await asyncio.wait_for(finished.wait(), timeout=1)


@pytest.mark.asyncio
async def test_sse_rendering() -> None:
    handle = await stream_text(MockProvider([text_step("x")]), _session(), model="m")

    events = [e async for e in handle.sse()]

    assert events[0] == 'data: {"type": "start"}\n\n'
    assert events[-1] == "data: [DONE]\n\n"
    assert all(e.startswith("data: ") and e.endswith("\n\n") for e in events)


@pytest.mark.asyncio
async def test_api_key_is_stripped_from_request_options() -> None:
    provider = MockProvider([text_step("x")])
    session = _session(provider_options={"api_key": "sk", "reasoning": {"effort": "low"}})

    handle = await stream_text(provider, session, model="m")
    await handle.wait()

    assert provider.requests[0].provider_options == {"reasoning": {"effort": "low"}}


def test_ui_messages_convert_to_provider_turns() -> None:
    ui = [
        UIMessage.model_validate({"role": "system", "parts": [{"type": "text", "text": "sys"}]}),
        UIMessage.model_validate(
            {
                "role": "user",
                "parts": [
                    {"type": "text", "text": "Look"},
                    {"type": "file", "url": "https://f/x.png", "mediaType": "image/png"},
                ],
            }
        ),
        UIMessage.model_validate(
            {
                "role": "assistant",
                "parts": [
                    {"type": "text", "text": "Found it"},
                    {
                        "type": "tool-search",
                        "toolCallId": "t1",
                        "state": "output-available",
                        "input": {"query": "x"},
                        "output": {"count": 0},
                    },
                    {"type": "tool-search", "toolCallId": "t2", "state": "input-available"},
                ],
            }
        ),
    ]

    messages = to_provider_messages(ui)

    assert [m.role for m in messages] == ["user", "assistant", "tool"]
    assert messages[0].attachments[0].media_type == "image/png"
    assert [c.id for c in messages[1].tool_calls] == ["t1"]
    assert messages[2].tool_call_id == "t1"
