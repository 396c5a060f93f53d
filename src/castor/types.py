"""Shared value types for response steps and tool invocations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ToolInvocationState = Literal["call", "result", "partial-call"]
KeyMode = Literal["priority", "fallback"]
ReasoningEffort = Literal["low", "medium", "high"]
AttemptLabel = Literal["primary", "fallback"]


@dataclass(frozen=True)
class TextSegment:
    """Plain assistant text emitted during one step."""

    text: str


@dataclass(frozen=True)
class ReasoningSegment:
    """Model reasoning (thinking) emitted during one step."""

    text: str


@dataclass(frozen=True)
class ToolCallSegment:
    """A tool call requested by the model."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultSegment:
    """The output of a tool call, carried by a ``tool`` step."""

    tool_call_id: str
    tool_name: str
    result: Any = None


Segment = TextSegment | ReasoningSegment | ToolCallSegment | ToolResultSegment


@dataclass(frozen=True)
class ResponseMessage:
    """One provider step as seen after the stream: assistant output or tool results."""

    role: Literal["assistant", "tool"]
    content: tuple[Segment, ...] = ()


@dataclass
class ToolInvocation:
    """A tool call paired (when possible) with its result."""

    tool_call_id: str
    tool_name: str
    state: ToolInvocationState = "call"
    args: dict[str, Any] | None = None
    result: Any = None
    #: True when a result arrived without a matching call.
    orphaned: bool = False

    def to_part(self) -> dict[str, Any]:
        """Render as a persisted ``tool-<name>`` message part."""
        part: dict[str, Any] = {
            "type": f"tool-{self.tool_name}",
            "toolCallId": self.tool_call_id,
            "state": self.state,
            "input": self.args,
            "output": self.result,
        }
        if self.orphaned:
            part["orphaned"] = True
        return part


@dataclass(frozen=True)
class Attachment:
    """A file attached to a user message.

    ``url`` may be a storage reference (a 32-character lowercase alphanumeric
    id) that must be re-resolved before the message reaches a provider.
    """

    url: str
    media_type: str | None = None
    filename: str | None = None


@dataclass
class Usage:
    """Token usage summed across steps."""

    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, usage: dict[str, int]) -> None:
        self.input_tokens += int(usage.get("input_tokens", 0) or 0)
        self.output_tokens += int(usage.get("output_tokens", 0) or 0)
        self.reasoning_tokens += int(usage.get("reasoning_tokens", 0) or 0)

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "reasoning_tokens": self.reasoning_tokens,
            "total_tokens": self.total_tokens,
        }
