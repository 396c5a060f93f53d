"""Gemini provider implementation."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any
import uuid

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

_GEMINI_PARTS_KEY = "gemini_model_parts"


class GeminiProvider:
    """Google Gemini API provider (streaming)."""

    name = "gemini"

    def __init__(self, api_key: str) -> None:
        """Create provider with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _build_config(self, request: ProviderRequest) -> Any:
        from google.genai import types

        config_kwargs: dict[str, Any] = {}
        if request.system_instruction:
            config_kwargs["system_instruction"] = request.system_instruction

        thinking = request.provider_options.get("thinking_config")
        if thinking is not None:
            config_kwargs["thinking_config"] = types.ThinkingConfig(**thinking)

        if request.tools:
            declarations = [
                types.FunctionDeclaration(
                    name=t["name"],
                    description=t.get("description", ""),
                    parameters=t.get("parameters"),
                )
                for t in request.tools
                if "name" in t
            ]
            if declarations:
                config_kwargs["tools"] = [
                    types.Tool(function_declarations=declarations)
                ]
                # The engine runs tools itself.
                config_kwargs["automatic_function_calling"] = (
                    types.AutomaticFunctionCallingConfig(disable=True)
                )
        return types.GenerateContentConfig(**config_kwargs)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamPart]:
        """Stream one step from the Gemini model."""
        client = self._get_client()
        config = self._build_config(request)
        contents = _build_contents(request.messages)

        model_parts: list[Any] = []
        usage: dict[str, int] = {}
        finish_reason: str | None = None
        try:
            chunks = await client.aio.models.generate_content_stream(
                model=request.model,
                contents=contents,
                config=config,
            )
            async for chunk in chunks:
                usage = _usage(chunk) or usage
                candidates = getattr(chunk, "candidates", None) or []
                if not candidates:
                    continue
                candidate = candidates[0]
                reason = getattr(candidate, "finish_reason", None)
                if reason is not None:
                    finish_reason = str(getattr(reason, "name", reason)).lower()
                content = getattr(candidate, "content", None)
                for part in getattr(content, "parts", None) or []:
                    model_parts.append(part)
                    function_call = getattr(part, "function_call", None)
                    text = getattr(part, "text", None)
                    if function_call is not None:
                        yield ToolCallPart(
                            ToolCall(
                                id=str(
                                    getattr(function_call, "id", None)
                                    or f"call_{uuid.uuid4().hex[:8]}"
                                ),
                                name=str(function_call.name),
                                arguments=dict(function_call.args or {}),
                            )
                        )
                    elif text and getattr(part, "thought", False):
                        yield ReasoningDelta(text)
                    elif text:
                        yield TextDelta(text)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="gemini",
                phase="stream",
                message="Gemini stream failed",
            ) from e

        yield StepFinish(
            finish_reason=finish_reason,
            usage=usage,
            provider_state={_GEMINI_PARTS_KEY: model_parts} if model_parts else None,
        )

    async def aclose(self) -> None:
        """Release the client; google-genai manages its own transport."""
        self._client = None


def _usage(chunk: Any) -> dict[str, int]:
    um = getattr(chunk, "usage_metadata", None)
    if um is None:
        return {}
    usage = {
        "input_tokens": int(getattr(um, "prompt_token_count", 0) or 0),
        "output_tokens": int(getattr(um, "candidates_token_count", 0) or 0),
    }
    thoughts = getattr(um, "thoughts_token_count", None)
    if thoughts is not None:
        usage["reasoning_tokens"] = int(thoughts)
    return usage


def _build_contents(messages: list[Message]) -> list[Any]:
    """Translate history into google-genai ``Content`` objects.

    Consecutive tool results are folded into a single user turn, since Gemini
    expects all function responses for one model turn together.
    """
    from google.genai import types

    contents: list[Any] = []
    call_id_to_name: dict[str, str] = {}
    previous_role: str | None = None

    for item in messages:
        if item.role == "tool":
            name = item.tool_name or call_id_to_name.get(
                item.tool_call_id or "", "unknown_tool"
            )
            response = _tool_response(item.content)
            part = types.Part.from_function_response(name=name, response=response)
            if previous_role == "tool" and contents:
                contents[-1].parts.append(part)
            else:
                contents.append(types.Content(role="user", parts=[part]))
        elif item.role == "assistant":
            for tc in item.tool_calls:
                call_id_to_name[tc.id] = tc.name
            replay = (item.provider_state or {}).get(_GEMINI_PARTS_KEY)
            if isinstance(replay, list) and replay:
                # Raw parts keep thought signatures intact across steps.
                ast_parts = list(replay)
            else:
                ast_parts = []
                if item.content:
                    ast_parts.append(types.Part.from_text(text=item.content))
                for tc in item.tool_calls:
                    ast_parts.append(
                        types.Part.from_function_call(name=tc.name, args=tc.arguments)
                    )
            if ast_parts:
                contents.append(types.Content(role="model", parts=ast_parts))
        else:
            user_parts: list[Any] = []
            if item.content:
                user_parts.append(types.Part.from_text(text=item.content))
            for att in item.attachments:
                user_parts.append(
                    types.Part.from_uri(file_uri=att.url, mime_type=att.media_type)
                )
            if user_parts:
                contents.append(types.Content(role="user", parts=user_parts))
        previous_role = item.role

    return contents


def _tool_response(content: str) -> dict[str, Any]:
    if not content:
        return {}
    try:
        parsed = json.loads(content)
    except ValueError:
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}
