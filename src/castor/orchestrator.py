"""Chat turn orchestration.

``ChatOrchestrator.handle_turn`` runs one turn through the pipeline:

    VALIDATING → AUTHORIZING → RESOLVING_CREDENTIAL → EXECUTING(primary)
        → SUCCEEDED
        → EXECUTING(fallback) → SUCCEEDED | FAILED

At most one fallback attempt runs, on the complementary credential, and only
when the model allows user keys and the complement exists. Conversation-visible
failures are saved as assistant error messages before the next step.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from castor.aggregate import aggregate_response, build_metadata, persist_response
from castor.classify import classify, create_error_part, error_response
from castor.credentials import enforce_platform_limit, resolve_credentials
from castor.engine import StreamSession, stream_text, to_provider_messages
from castor.errors import InternalError, UsageLimitError
from castor.models import default_catalog
from castor.prompts import build_system_prompt
from castor.providers import get_provider
from castor.reasoning import build_provider_options
from castor.request import UIMessage, UIPart, validate_chat_request
from castor.search import SEARCH_TOOL_NAME, SearchTool
from castor.telemetry import Telemetry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from castor.config import Config
    from castor.credentials import CredentialDecision
    from castor.engine import StreamHandle, Tool
    from castor.models import ModelCatalog
    from castor.providers.base import StreamingProvider
    from castor.request import ChatTurnRequest
    from castor.store import ChatStore
    from castor.types import AttemptLabel

logger = logging.getLogger(__name__)

#: Storage references are 32-character lowercase alphanumeric ids.
STORAGE_REFERENCE = re.compile(r"^[a-z0-9]{32}$")


class TurnState(StrEnum):
    VALIDATING = "validating"
    AUTHORIZING = "authorizing"
    RESOLVING_CREDENTIAL = "resolving_credential"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TurnResponse:
    """Outcome of one turn: either a JSON body or a live stream."""

    status: int
    body: dict[str, Any] | None = None
    stream: StreamHandle | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_streaming(self) -> bool:
        return self.stream is not None

    def sse(self) -> AsyncIterator[str]:
        if self.stream is None:
            raise RuntimeError("Not a streaming response")
        return self.stream.sse()


@dataclass
class _Turn:
    """Mutable per-turn context shared by attempts and hooks."""

    request: ChatTurnRequest
    state: TurnState = TurnState.VALIDATING
    user_message_id: str | None = None
    decision: CredentialDecision | None = None
    used_user_key: bool = False

    @property
    def metadata(self) -> dict[str, Any]:
        return build_metadata(
            self.request.model,
            enable_search=self.request.enable_search,
            reasoning_effort=self.request.reasoning_effort,
        )


class ChatOrchestrator:
    """Drive chat turns against a store, a catalog, and provider credentials."""

    def __init__(
        self,
        store: ChatStore,
        config: Config,
        *,
        catalog: ModelCatalog | None = None,
        telemetry: Telemetry | None = None,
        provider_factory: Callable[[str, str | None], StreamingProvider] = get_provider,
        search_tool: SearchTool | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.catalog = catalog or default_catalog()
        self.telemetry = telemetry or Telemetry.disabled()
        self._provider_factory = provider_factory
        self._search_tool = search_tool or SearchTool(config.search)

    async def handle_turn(
        self, payload: Any, *, abort: asyncio.Event | None = None
    ) -> TurnResponse:
        """Run one chat turn; never raises except on cancellation."""
        turn: _Turn | None = None
        try:
            with self.telemetry.timed("chat_turn.prepare"):
                request = validate_chat_request(payload, self.catalog)
                turn = _Turn(request)
                handle = await self._run(turn, abort)
            turn.state = TurnState.SUCCEEDED
            handle.launch()
            return TurnResponse(
                status=200,
                stream=handle,
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failed_in = turn.state if turn is not None else TurnState.VALIDATING
            if turn is not None:
                turn.state = TurnState.FAILED
            classified = classify(e)
            logger.info(
                "Chat turn failed in %s (%s): %s",
                failed_in,
                classified.kind,
                classified.raw_message,
            )
            self.telemetry.capture(
                "chat_turn_failed",
                kind=str(classified.kind),
                state=str(failed_in),
                model=turn.request.model.id if turn else None,
            )
            self.telemetry.flush()
            response = error_response(e)
            return TurnResponse(status=response.status, body=response.body)

    async def _run(self, turn: _Turn, abort: asyncio.Event | None) -> StreamHandle:
        request = turn.request
        model = request.model

        turn.state = TurnState.AUTHORIZING
        user = await self.store.get_current_user()

        turn.state = TurnState.RESOLVING_CREDENTIAL
        decision = await resolve_credentials(model, self.store)
        turn.decision = decision
        try:
            await enforce_platform_limit(model, decision, self.store)
        except UsageLimitError as limit_error:
            # A reload has no new user message to hang the error on.
            if not request.reload_assistant_message_id:
                turn.user_message_id = await self._save_user_message(request)
            await self._save_error_message(turn, limit_error)
            raise

        use_search = request.enable_search and model.capabilities.tool_calling
        if request.enable_search and not use_search:
            logger.info("Search requested but %s cannot call tools; running without it", model.id)

        system = build_system_prompt(
            user,
            request.system_prompt,
            enable_search=use_search,
            timezone=request.timezone,
        )

        if request.reload_assistant_message_id:
            turn.user_message_id = await self._prepare_reload(
                request.reload_assistant_message_id
            )
        else:
            turn.user_message_id = await self._save_user_message(request)

        messages = to_provider_messages(await self.resolve_attachments(request.messages))
        tools: dict[str, Tool] = {}
        if use_search:
            tools[SEARCH_TOOL_NAME] = self._search_tool

        self.telemetry.capture(
            "chat_turn_started",
            model=model.id,
            provider=model.provider,
            search=use_search,
        )

        turn.state = TurnState.EXECUTING
        primary_is_user = decision.use_user_key
        try:
            return await self._attempt(
                turn, primary_is_user, "primary", messages, system, tools, abort
            )
        except asyncio.CancelledError:
            raise
        except Exception as primary_error:
            classified = classify(primary_error)
            if classified.in_conversation:
                await self._save_error_message(turn, primary_error)
            if not (model.api_key_usage.allow_user_key and decision.fallback_available):
                raise
            logger.warning(
                "Primary attempt failed (%s, retryable=%s); retrying on %s key",
                classified.kind,
                getattr(primary_error, "retryable", None),
                "platform" if primary_is_user else "user",
            )
            self.telemetry.capture("chat_fallback", model=model.id, kind=str(classified.kind))

        try:
            return await self._attempt(
                turn, not primary_is_user, "fallback", messages, system, tools, abort
            )
        except asyncio.CancelledError:
            raise
        except Exception as fallback_error:
            if classify(fallback_error).in_conversation:
                await self._save_error_message(turn, fallback_error)
            raise

    async def _attempt(
        self,
        turn: _Turn,
        use_user_key: bool,
        label: AttemptLabel,
        messages: list[Any],
        system: str,
        tools: dict[str, Tool],
        abort: asyncio.Event | None,
    ) -> StreamHandle:
        """Open one primed generation attempt on the chosen credential."""
        request = turn.request
        model = request.model
        if turn.decision is None:
            raise InternalError("Generation attempted before credentials were resolved")
        api_key = turn.decision.key_for(use_user_key, self.config.platform_key(model.provider))
        options = build_provider_options(
            model.provider, model.id, request.reasoning_effort, api_key=api_key
        )
        tag = "mock" if self.config.use_mock else model.provider
        provider = self._provider_factory(tag, options.get("api_key"))
        session = StreamSession(
            messages=list(messages),
            provider_options=options,
            parent_message_id=turn.user_message_id,
            attempt=label,
        )
        logger.debug("Starting %s attempt for %s (user_key=%s)", label, model.id, use_user_key)
        handle = await stream_text(
            provider,
            session,
            model=model.provider_model,
            system=system,
            tools=tools,
            max_steps=self.config.max_steps,
            on_error=lambda exc, _session: self._on_stream_error(turn, exc),
            on_finish=lambda s: self._on_stream_finish(turn, s),
            abort=abort,
        )
        turn.used_user_key = use_user_key
        return handle

    async def _on_stream_error(self, turn: _Turn, error: BaseException) -> str:
        classified = classify(error)
        if classified.in_conversation:
            await self._save_error_message(turn, error)
        self.telemetry.capture("chat_stream_error", kind=str(classified.kind))
        return json.dumps({"error": create_error_part(classified)["error"]})

    async def _on_stream_finish(self, turn: _Turn, session: StreamSession) -> None:
        request = turn.request
        try:
            if session.error is not None and not any(s.content for s in session.steps):
                logger.debug("Nothing generated before failure; skipping persistence")
                return
            aggregated = aggregate_response(session.steps)
            await persist_response(
                self.store,
                aggregated,
                chat_id=request.chat_id,
                parent_message_id=session.parent_message_id,
                model=request.model,
                used_user_key=turn.used_user_key,
                metadata=turn.metadata,
                usage=session.usage,
                duration_ms=session.duration_ms,
            )
            self.telemetry.capture(
                "chat_turn_completed",
                model=request.model.id,
                attempt=session.attempt,
                aborted=session.aborted,
                total_tokens=session.usage.total_tokens,
            )
        finally:
            self.telemetry.flush()

    # --- persistence helpers ---

    async def _save_user_message(self, request: ChatTurnRequest) -> str | None:
        last = request.last_message
        if last.role != "user":
            return None
        return await self.store.send_user_message_to_chat(
            chat_id=request.chat_id,
            content=last.text,
            parts=[p.model_dump() for p in last.parts],
            metadata={},
        )

    async def _prepare_reload(self, assistant_message_id: str) -> str | None:
        """Drop the reloaded answer; the new one hangs off the same user message."""
        details = await self.store.get_message_details(assistant_message_id)
        parent = details.parent_message_id if details else None
        await self.store.delete_message_and_descendants(assistant_message_id)
        return parent

    async def _save_error_message(self, turn: _Turn, error: BaseException) -> str | None:
        """Persist a classified failure as an empty assistant message with an error part.

        Skipped without a user message to attach to. Never raises.
        """
        if turn.user_message_id is None:
            return None
        try:
            return await self.store.save_assistant_message(
                chat_id=turn.request.chat_id,
                content="",
                parent_message_id=turn.user_message_id,
                parts=[create_error_part(classify(error))],
                metadata=turn.metadata,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to save error message: %s", e)
            return None

    async def resolve_attachments(
        self, messages: tuple[UIMessage, ...]
    ) -> list[UIMessage]:
        """Swap storage references in file parts for fresh URLs.

        All lookups run concurrently. A failed lookup keeps the old reference.
        """
        targets = [
            (mi, pi, str(part.get("url")))
            for mi, message in enumerate(messages)
            for pi, part in enumerate(message.parts)
            if part.type == "file" and STORAGE_REFERENCE.match(str(part.get("url") or ""))
        ]
        if not targets:
            return list(messages)

        urls = await asyncio.gather(
            *(self.store.get_storage_url(ref) for _, _, ref in targets),
            return_exceptions=True,
        )
        replacements: dict[tuple[int, int], str] = {}
        for (mi, pi, ref), url in zip(targets, urls, strict=True):
            if isinstance(url, asyncio.CancelledError):
                raise url
            if isinstance(url, BaseException):
                logger.warning("Resolving attachment %s failed: %s", ref, url)
            elif url:
                replacements[(mi, pi)] = url

        resolved: list[UIMessage] = []
        for mi, message in enumerate(messages):
            if not any(key[0] == mi for key in replacements):
                resolved.append(message)
                continue
            parts = [
                UIPart(**{**part.model_dump(), "url": replacements[(mi, pi)]})
                if (mi, pi) in replacements
                else part
                for pi, part in enumerate(message.parts)
            ]
            resolved.append(message.model_copy(update={"parts": parts}))
        return resolved
