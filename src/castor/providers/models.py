"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from castor.types import Attachment


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A standard conversational message turn, as sent to a provider."""

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    #: Opaque per-provider data replayed on later steps (thinking signatures, raw parts).
    provider_state: dict[str, Any] | None = None


@dataclass(frozen=True)
class ProviderRequest:
    """A unified request payload for one streaming step."""

    model: str
    messages: list[Message]
    system_instruction: str | None = None
    tools: list[dict[str, Any]] | None = None
    #: Native options from the reasoning option builder (``api_key`` already removed).
    provider_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    call: ToolCall


@dataclass(frozen=True)
class StepFinish:
    """Terminal part of every step."""

    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    provider_state: dict[str, Any] | None = None


StreamPart = TextDelta | ReasoningDelta | ToolCallPart | StepFinish
