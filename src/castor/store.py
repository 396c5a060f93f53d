"""Chat store boundary: the RPC-style persistence collaborator.

The pipeline depends only on the shapes declared by ``ChatStore``. Storage,
encryption, and quota bookkeeping live behind it. ``InMemoryChatStore`` backs
local development and tests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import itertools
import logging
from typing import Any, Protocol, runtime_checkable

from castor.errors import AuthError, UsageLimitError
from castor.types import KeyMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserProfile:
    id: str
    name: str | None = None
    preferred_name: str | None = None
    occupation: str | None = None
    traits: str | None = None
    about: str | None = None


@dataclass(frozen=True)
class ApiKeyEntry:
    """A stored user key, without its secret."""

    provider: str
    mode: KeyMode = "fallback"


@dataclass(frozen=True)
class MessageDetails:
    id: str
    role: str
    parent_message_id: str | None = None


@dataclass(frozen=True)
class StoredMessage:
    id: str
    chat_id: str
    role: str
    content: str
    parts: list[dict[str, Any]]
    metadata: dict[str, Any]
    parent_message_id: str | None = None


@runtime_checkable
class ChatStore(Protocol):
    """Persistence operations the pipeline calls."""

    async def get_current_user(self) -> UserProfile:
        """Return the caller, or raise ``AuthError``."""
        ...

    async def get_api_keys(self) -> list[ApiKeyEntry]: ...

    async def get_decrypted_key(self, provider: str) -> str | None: ...

    async def assert_not_over_limit(self, *, uses_premium_credits: bool) -> None:
        """Raise ``UsageLimitError`` when the caller's quota is exhausted."""
        ...

    async def send_user_message_to_chat(
        self,
        *,
        chat_id: str,
        content: str,
        parts: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> str: ...

    async def save_assistant_message(
        self,
        *,
        chat_id: str,
        content: str,
        parent_message_id: str | None,
        parts: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> str: ...

    async def get_message_details(self, message_id: str) -> MessageDetails | None: ...

    async def delete_message_and_descendants(self, message_id: str) -> None: ...

    async def increment_user_api_key_usage(self, provider: str) -> None: ...

    async def increment_message_count(self, *, uses_premium_credits: bool) -> None: ...

    async def get_storage_url(self, storage_id: str) -> str | None: ...


@dataclass
class InMemoryChatStore:
    """Process-local ``ChatStore``.

    Counters are mutated under a lock, standing in for the atomic increments a
    real store performs.
    """

    user: UserProfile | None = field(
        default_factory=lambda: UserProfile(id="user_local")
    )
    #: provider → (decrypted key, mode)
    user_keys: dict[str, tuple[str, KeyMode]] = field(default_factory=dict)
    daily_limit: int | None = None
    premium_limit: int | None = None
    storage_urls: dict[str, str] = field(default_factory=dict)

    messages: dict[str, StoredMessage] = field(default_factory=dict)
    message_count: int = 0
    premium_count: int = 0
    api_key_usage: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def _require_user(self) -> UserProfile:
        if self.user is None:
            raise AuthError()
        return self.user

    async def get_current_user(self) -> UserProfile:
        return self._require_user()

    async def get_api_keys(self) -> list[ApiKeyEntry]:
        self._require_user()
        return [ApiKeyEntry(provider=p, mode=m) for p, (_, m) in self.user_keys.items()]

    async def get_decrypted_key(self, provider: str) -> str | None:
        self._require_user()
        entry = self.user_keys.get(provider)
        return entry[0] if entry else None

    async def assert_not_over_limit(self, *, uses_premium_credits: bool) -> None:
        self._require_user()
        if self.daily_limit is not None and self.message_count >= self.daily_limit:
            raise UsageLimitError("DAILY_LIMIT_REACHED")
        if (
            uses_premium_credits
            and self.premium_limit is not None
            and self.premium_count >= self.premium_limit
        ):
            raise UsageLimitError("PREMIUM_LIMIT_REACHED")

    def _next_id(self) -> str:
        return f"msg_{next(self._ids)}"

    async def send_user_message_to_chat(
        self,
        *,
        chat_id: str,
        content: str,
        parts: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> str:
        self._require_user()
        message_id = self._next_id()
        self.messages[message_id] = StoredMessage(
            id=message_id,
            chat_id=chat_id,
            role="user",
            content=content,
            parts=parts,
            metadata=metadata,
        )
        return message_id

    async def save_assistant_message(
        self,
        *,
        chat_id: str,
        content: str,
        parent_message_id: str | None,
        parts: list[dict[str, Any]],
        metadata: dict[str, Any],
    ) -> str:
        self._require_user()
        message_id = self._next_id()
        self.messages[message_id] = StoredMessage(
            id=message_id,
            chat_id=chat_id,
            role="assistant",
            content=content,
            parts=parts,
            metadata=metadata,
            parent_message_id=parent_message_id,
        )
        return message_id

    async def get_message_details(self, message_id: str) -> MessageDetails | None:
        msg = self.messages.get(message_id)
        if msg is None:
            return None
        return MessageDetails(
            id=msg.id, role=msg.role, parent_message_id=msg.parent_message_id
        )

    async def delete_message_and_descendants(self, message_id: str) -> None:
        doomed = {message_id}
        changed = True
        while changed:
            changed = False
            for msg in self.messages.values():
                if msg.parent_message_id in doomed and msg.id not in doomed:
                    doomed.add(msg.id)
                    changed = True
        for mid in doomed:
            self.messages.pop(mid, None)

    async def increment_user_api_key_usage(self, provider: str) -> None:
        async with self._lock:
            self.api_key_usage[provider] = self.api_key_usage.get(provider, 0) + 1

    async def increment_message_count(self, *, uses_premium_credits: bool) -> None:
        async with self._lock:
            self.message_count += 1
            if uses_premium_credits:
                self.premium_count += 1

    async def get_storage_url(self, storage_id: str) -> str | None:
        return self.storage_urls.get(storage_id)

    def assistant_messages(self) -> list[StoredMessage]:
        return [m for m in self.messages.values() if m.role == "assistant"]
