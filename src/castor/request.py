"""Request validator: raw chat-turn payload → ``ChatTurnRequest``.

Validation is side-effect free. Checks run in a fixed order and the first
failure wins, so callers always see the same message for the same payload.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from castor.errors import ValidationError

if TYPE_CHECKING:
    from castor.models import ModelCatalog, ModelDefinition
    from castor.types import ReasoningEffort

logger = logging.getLogger(__name__)

MAX_SYSTEM_PROMPT_CHARS = 1000
_REASONING_EFFORTS = ("low", "medium", "high")


class UIPart(BaseModel):
    """One part of a UI message (text, file, reasoning, tool, error, ...)."""

    type: str = Field(min_length=1)

    model_config = {"extra": "allow"}

    def get(self, name: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(name, default)


class UIMessage(BaseModel):
    """A chat message as the client sends it."""

    id: str | None = None
    role: Literal["user", "assistant", "system"]
    parts: list[UIPart] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None

    model_config = {"extra": "allow"}

    @property
    def text(self) -> str:
        """Concatenated text of all ``text`` parts."""
        return "".join(
            str(p.get("text", "")) for p in self.parts if p.type == "text"
        )

    @property
    def file_parts(self) -> list[UIPart]:
        return [p for p in self.parts if p.type == "file"]


class UserInfo(BaseModel):
    timezone: str | None = None

    model_config = {"extra": "ignore"}


@dataclass(frozen=True)
class ChatTurnRequest:
    """One validated inbound chat turn."""

    messages: tuple[UIMessage, ...]
    chat_id: str
    model: ModelDefinition
    system_prompt: str | None = None
    reload_assistant_message_id: str | None = None
    enable_search: bool = False
    reasoning_effort: ReasoningEffort | None = None
    timezone: str | None = None

    @property
    def last_message(self) -> UIMessage:
        return self.messages[-1]


def _decode(payload: Any) -> dict[str, Any]:
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Invalid JSON payload.") from e
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ValidationError("Invalid JSON payload.") from e
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload.")
    return payload


def validate_chat_request(payload: Any, catalog: ModelCatalog) -> ChatTurnRequest:
    """Validate *payload* against *catalog*.

    Raises:
        ValidationError: On the first failed check.
    """
    data = _decode(payload)

    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ValidationError("'messages' must be a non-empty array.")

    chat_id = data.get("chatId")
    if not isinstance(chat_id, str) or not chat_id.strip():
        raise ValidationError("'chatId' must be a non-empty string.")

    model_id = data.get("model")
    model = catalog.get(model_id) if isinstance(model_id, str) else None
    if model is None:
        raise ValidationError("Invalid 'model' provided.")

    system_prompt = data.get("systemPrompt")
    if system_prompt is not None and (
        not isinstance(system_prompt, str)
        or len(system_prompt) > MAX_SYSTEM_PROMPT_CHARS
    ):
        raise ValidationError(
            f"'systemPrompt' must be a string of at most "
            f"{MAX_SYSTEM_PROMPT_CHARS} characters."
        )

    try:
        ui_messages = tuple(UIMessage.model_validate(m) for m in messages)
    except PydanticValidationError as e:
        logger.debug("Rejected malformed message: %s", e)
        raise ValidationError("'messages' contains a malformed message.") from e

    effort = data.get("reasoningEffort")
    if effort is not None and effort not in _REASONING_EFFORTS:
        raise ValidationError("'reasoningEffort' must be one of: low, medium, high.")

    reload_id = data.get("reloadAssistantMessageId")
    if reload_id is not None and not isinstance(reload_id, str):
        raise ValidationError("'reloadAssistantMessageId' must be a string.")

    enable_search = data.get("enableSearch")
    if enable_search is None:
        enable_search = False
    elif not isinstance(enable_search, bool):
        raise ValidationError("'enableSearch' must be a boolean.")

    timezone: str | None = None
    user_info = data.get("userInfo")
    if isinstance(user_info, dict):
        try:
            timezone = UserInfo.model_validate(user_info).timezone
        except PydanticValidationError:
            timezone = None

    return ChatTurnRequest(
        messages=ui_messages,
        chat_id=chat_id,
        model=model,
        system_prompt=system_prompt or None,
        reload_assistant_message_id=reload_id or None,
        enable_search=enable_search,
        reasoning_effort=effort,
        timezone=timezone,
    )
