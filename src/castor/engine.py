"""Streaming execution engine: the multi-step generation loop.

``stream_text`` builds a ``StreamHandle``; ``await handle.start()`` primes the
first step so that failures raised before any token arrives surface to the
caller (where they drive credential fallback). After priming, the generation
runs in a background task that feeds an outbound queue, so a client that stops
reading does not stop generation, and the completion hook always runs.

Outbound chunks are JSON objects:

- ``start``
- ``reasoning-delta`` / ``text-delta``
- ``tool-input-available`` / ``tool-output-available``
- ``finish-step`` / ``finish``
- ``error``
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from castor.providers.models import (
    Message,
    ProviderRequest,
    ReasoningDelta,
    StepFinish,
    TextDelta,
    ToolCall,
    ToolCallPart,
)
from castor.types import (
    Attachment,
    ReasoningSegment,
    ResponseMessage,
    TextSegment,
    ToolCallSegment,
    ToolResultSegment,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

    from castor.providers.base import StreamingProvider
    from castor.providers.models import StreamPart
    from castor.request import UIMessage
    from castor.types import AttemptLabel, Segment

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 20

_DONE = object()


class Tool(Protocol):
    """A callable tool the model may invoke between steps."""

    name: str

    @property
    def definition(self) -> dict[str, Any]: ...

    async def execute(self, args: Mapping[str, Any]) -> Any: ...


@dataclass
class StreamSession:
    """Per-attempt state, mutated as parts stream in."""

    messages: list[Message]
    provider_options: dict[str, Any] = field(default_factory=dict)
    parent_message_id: str | None = None
    attempt: AttemptLabel = "primary"
    started_at: float = field(default_factory=time.monotonic)
    text: str = ""
    reasoning: str = ""
    steps: list[ResponseMessage] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    aborted: bool = False
    error: BaseException | None = None

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


OnError = Callable[[BaseException, StreamSession], Awaitable["str | None"]]
OnFinish = Callable[[StreamSession], Awaitable[None]]


# --- UI message conversion ---


def _attachment(part: Any) -> Attachment | None:
    url = part.get("url")
    if not url:
        return None
    return Attachment(
        url=str(url),
        media_type=part.get("mediaType"),
        filename=part.get("filename"),
    )


def _tool_name(part_type: str) -> str | None:
    if part_type.startswith("tool-"):
        return part_type.removeprefix("tool-")
    return None


def to_provider_messages(ui_messages: Iterable[UIMessage]) -> list[Message]:
    """Convert client UI messages into provider turns.

    Completed tool parts on assistant messages become a tool call on the
    assistant turn followed by one ``tool`` turn per result. System messages
    are dropped; the system prompt travels separately.
    """
    converted: list[Message] = []
    for ui in ui_messages:
        if ui.role == "system":
            continue
        if ui.role == "user":
            attachments = tuple(
                a for a in (_attachment(p) for p in ui.file_parts) if a is not None
            )
            converted.append(
                Message(role="user", content=ui.text, attachments=attachments)
            )
            continue

        calls: list[ToolCall] = []
        results: list[Message] = []
        for part in ui.parts:
            name = _tool_name(part.type)
            if name is None:
                continue
            call_id = str(part.get("toolCallId") or "")
            if not call_id:
                continue
            calls.append(ToolCall(id=call_id, name=name, arguments=part.get("input") or {}))
            if part.get("state") in ("output-available", "result"):
                results.append(
                    Message(
                        role="tool",
                        content=json.dumps(part.get("output"), default=str),
                        tool_call_id=call_id,
                        tool_name=name,
                    )
                )
        # Calls without results cannot be replayed to any provider.
        answered = {m.tool_call_id for m in results}
        converted.append(
            Message(
                role="assistant",
                content=ui.text,
                tool_calls=tuple(c for c in calls if c.id in answered),
            )
        )
        converted.extend(results)
    return converted


# --- Stream handle ---


async def _chain(
    first: StreamPart | None, rest: AsyncIterator[StreamPart]
) -> AsyncIterator[StreamPart]:
    if first is not None:
        yield first
    async for part in rest:
        yield part


async def _aclose(iterator: Any) -> None:
    close = getattr(iterator, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:  # pragma: no cover - best effort
        logger.debug("Error closing provider stream: %s", e)


class StreamHandle:
    """One primed generation attempt.

    Lifecycle: ``await start()`` (raises on pre-stream failure), then
    ``events()`` / ``sse()`` to read, or ``wait()`` to run to completion.
    """

    def __init__(
        self,
        provider: StreamingProvider,
        session: StreamSession,
        *,
        model: str,
        system: str | None = None,
        tools: Mapping[str, Tool] | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        on_error: OnError | None = None,
        on_finish: OnFinish | None = None,
        abort: asyncio.Event | None = None,
    ) -> None:
        self.provider = provider
        self.session = session
        self._model = model
        self._system = system
        self._tools = dict(tools or {})
        self._max_steps = max_steps
        self._on_error = on_error
        self._on_finish = on_finish
        self._abort = abort or asyncio.Event()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._iter: AsyncIterator[StreamPart] | None = None
        self._first: StreamPart | None = None
        self._task: asyncio.Task[None] | None = None

    def _request(self) -> ProviderRequest:
        options = {k: v for k, v in self.session.provider_options.items() if k != "api_key"}
        return ProviderRequest(
            model=self._model,
            messages=list(self.session.messages),
            system_instruction=self._system,
            tools=[t.definition for t in self._tools.values()] or None,
            provider_options=options,
        )

    async def start(self) -> StreamHandle:
        """Open the first step and wait for its first part."""
        iterator = aiter(self.provider.stream(self._request()))
        try:
            self._first = await anext(iterator)
        except StopAsyncIteration:
            self._first = None
        except BaseException:
            await _aclose(iterator)
            await self.provider.aclose()
            raise
        self._iter = iterator
        logger.debug(
            "Stream primed (attempt=%s, provider=%s)",
            self.session.attempt,
            self.provider.name,
        )
        return self

    def launch(self) -> None:
        """Start the background consumer; idempotent."""
        if self._iter is None:
            raise RuntimeError("StreamHandle.start() must be awaited before launch()")
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield outbound chunks until the generation ends."""
        self.launch()
        while True:
            chunk = await self._queue.get()
            if chunk is _DONE:
                return
            yield chunk

    async def sse(self) -> AsyncIterator[str]:
        """Outbound chunks rendered as server-sent events."""
        async for chunk in self.events():
            yield f"data: {json.dumps(chunk, default=str)}\n\n"
        yield "data: [DONE]\n\n"

    async def wait(self) -> StreamSession:
        """Run the generation to completion without reading chunks."""
        self.launch()
        assert self._task is not None
        await self._task
        return self.session

    def abort(self) -> None:
        self._abort.set()

    async def _pump(self) -> None:
        try:
            async for chunk in self._generate():
                self._queue.put_nowait(chunk)
        finally:
            self._queue.put_nowait(_DONE)

    async def _generate(self) -> AsyncIterator[dict[str, Any]]:
        session = self.session
        iterator = self._iter
        first = self._first
        step = 0
        try:
            yield {"type": "start"}
            while iterator is not None:
                step += 1
                calls: list[ToolCall] = []
                finish: StepFinish | None = None
                text, reasoning = [], []
                stream = _chain(first, iterator)
                try:
                    async for part in stream:
                        if self._abort.is_set():
                            session.aborted = True
                            logger.info("Generation aborted during step %d", step)
                            break
                        match part:
                            case TextDelta(text=delta):
                                text.append(delta)
                                yield {"type": "text-delta", "id": f"text-{step}", "delta": delta}
                            case ReasoningDelta(text=delta):
                                reasoning.append(delta)
                                yield {
                                    "type": "reasoning-delta",
                                    "id": f"reasoning-{step}",
                                    "delta": delta,
                                }
                            case ToolCallPart(call=call):
                                calls.append(call)
                                yield {
                                    "type": "tool-input-available",
                                    "toolCallId": call.id,
                                    "toolName": call.name,
                                    "input": call.arguments,
                                }
                            case StepFinish():
                                finish = part
                finally:
                    await _aclose(stream)
                    await _aclose(iterator)
                iterator, first = None, None

                self._record_step("".join(text), "".join(reasoning), calls, finish)
                yield {"type": "finish-step"}

                if session.aborted or not calls:
                    break
                if step >= self._max_steps:
                    logger.info("Step limit (%d) reached with pending tool calls", step)
                    break

                results = []
                for call in calls:
                    result = await self._run_tool(call)
                    results.append((call, result))
                    yield {
                        "type": "tool-output-available",
                        "toolCallId": call.id,
                        "output": result,
                    }
                self._record_tool_results(results)
                if self._abort.is_set():
                    session.aborted = True
                    logger.info("Generation aborted after tool execution")
                    break
                iterator = aiter(self.provider.stream(self._request()))

            yield {"type": "finish", "finishReason": session.finish_reason or "stop"}
        except asyncio.CancelledError:
            raise
        except Exception as e:
            session.error = e
            logger.warning("Generation failed mid-stream: %s", e)
            error_text = None
            if self._on_error is not None:
                try:
                    error_text = await self._on_error(e, session)
                except asyncio.CancelledError:
                    raise
                except Exception as hook_error:
                    logger.error("on_error hook failed: %s", hook_error)
            yield {"type": "error", "errorText": error_text or str(e) or type(e).__name__}
        finally:
            if iterator is not None:
                await _aclose(iterator)
            await self._finish()

    async def _finish(self) -> None:
        try:
            if self._on_finish is not None:
                await self._on_finish(self.session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("on_finish hook failed: %s", e)
        finally:
            await self.provider.aclose()

    def _record_step(
        self,
        text: str,
        reasoning: str,
        calls: list[ToolCall],
        finish: StepFinish | None,
    ) -> None:
        session = self.session
        content: list[Segment] = []
        if reasoning:
            content.append(ReasoningSegment(reasoning))
            session.reasoning += reasoning
        if text:
            content.append(TextSegment(text))
            session.text += text
        content.extend(ToolCallSegment(c.id, c.name, dict(c.arguments)) for c in calls)
        session.steps.append(ResponseMessage(role="assistant", content=tuple(content)))
        if finish is not None:
            session.usage.add(finish.usage)
            session.finish_reason = finish.finish_reason
        session.messages.append(
            Message(
                role="assistant",
                content=text,
                tool_calls=tuple(calls),
                provider_state=finish.provider_state if finish else None,
            )
        )

    def _record_tool_results(self, results: list[tuple[ToolCall, Any]]) -> None:
        session = self.session
        session.steps.append(
            ResponseMessage(
                role="tool",
                content=tuple(
                    ToolResultSegment(call.id, call.name, result) for call, result in results
                ),
            )
        )
        session.messages.extend(
            Message(
                role="tool",
                content=json.dumps(result, default=str),
                tool_call_id=call.id,
                tool_name=call.name,
            )
            for call, result in results
        )

    async def _run_tool(self, call: ToolCall) -> Any:
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("Model called unknown tool %r", call.name)
            return {"error": f"Unknown tool: {call.name}"}
        try:
            return await tool.execute(call.arguments)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            return {"error": str(e) or type(e).__name__}


async def stream_text(
    provider: StreamingProvider,
    session: StreamSession,
    *,
    model: str,
    system: str | None = None,
    tools: Mapping[str, Tool] | None = None,
    max_steps: int = DEFAULT_MAX_STEPS,
    on_error: OnError | None = None,
    on_finish: OnFinish | None = None,
    abort: asyncio.Event | None = None,
) -> StreamHandle:
    """Create and prime a generation attempt.

    Raises whatever the provider raises before its first part.
    """
    handle = StreamHandle(
        provider,
        session,
        model=model,
        system=system,
        tools=tools,
        max_steps=max_steps,
        on_error=on_error,
        on_finish=on_finish,
        abort=abort,
    )
    return await handle.start()
