"""Credential resolver: pick the primary key and decide whether a fallback exists."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from castor.errors import AuthError, UserKeyRequiredError

if TYPE_CHECKING:
    from castor.models import ModelDefinition
    from castor.store import ChatStore
    from castor.types import KeyMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialDecision:
    """Which key the primary attempt uses, and whether its complement is usable.

    Computed once per request and never persisted.
    """

    use_user_key: bool
    user_api_key: str | None = None
    key_mode: KeyMode | None = None
    fallback_available: bool = False

    @property
    def has_user_key(self) -> bool:
        return bool(self.user_api_key)

    def key_for(self, use_user_key: bool, platform_key: str | None) -> str | None:
        """Key for an attempt on the user (True) or platform (False) credential."""
        return self.user_api_key if use_user_key else platform_key

    def __repr__(self) -> str:
        return (
            f"CredentialDecision(use_user_key={self.use_user_key}, "
            f"has_user_key={self.has_user_key}, key_mode={self.key_mode!r}, "
            f"fallback_available={self.fallback_available})"
        )


async def _fetch_user_key(
    model: ModelDefinition, store: ChatStore
) -> tuple[str | None, KeyMode | None]:
    """Find the caller's key entry for the model's provider and decrypt it.

    ``AuthError`` propagates. Any other failure means "no user key".
    """
    try:
        entries = await store.get_api_keys()
    except asyncio.CancelledError:
        raise
    except AuthError:
        raise
    except Exception:
        logger.warning("Listing user API keys failed", exc_info=True)
        return None, None

    entry = next((e for e in entries if e.provider == model.provider), None)
    if entry is None:
        return None, None

    try:
        key = await store.get_decrypted_key(model.provider)
    except asyncio.CancelledError:
        raise
    except AuthError:
        raise
    except Exception:
        logger.warning(
            "Decrypting user API key failed (provider=%s)",
            model.provider,
            exc_info=True,
        )
        return None, entry.mode
    return (key or None), entry.mode


async def resolve_credentials(
    model: ModelDefinition, store: ChatStore
) -> CredentialDecision:
    """Resolve the credential decision for *model*.

    Raises:
        UserKeyRequiredError: The model runs only on a user key and none exists.
        AuthError: The store rejected the session.
    """
    usage = model.api_key_usage
    if not usage.allow_user_key:
        return CredentialDecision(use_user_key=False)

    user_key, mode = await _fetch_user_key(model, store)
    has_user_key = user_key is not None

    if usage.user_key_only and not has_user_key:
        raise UserKeyRequiredError(model.provider)

    use_user_key = (usage.user_key_only and has_user_key) or (
        mode == "priority" and has_user_key
    )
    # The platform key always exists; the user key only if one was found.
    fallback_available = True if use_user_key else has_user_key

    decision = CredentialDecision(
        use_user_key=use_user_key,
        user_api_key=user_key,
        key_mode=mode,
        fallback_available=fallback_available,
    )
    logger.debug("Resolved credentials for %s: %r", model.id, decision)
    return decision


async def enforce_platform_limit(
    model: ModelDefinition, decision: CredentialDecision, store: ChatStore
) -> None:
    """Check shared quota when the primary attempt uses the platform key.

    Raises:
        UsageLimitError: Quota exhausted.
    """
    if decision.use_user_key or model.skip_rate_limit:
        return
    await store.assert_not_over_limit(uses_premium_credits=model.uses_premium_credits)
