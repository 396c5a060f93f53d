"""Exception hierarchy for Castor."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class ValidationError(CastorError):
    """An inbound chat turn is malformed."""


class AuthError(CastorError):
    """The caller has no valid session."""

    def __init__(
        self, message: str = "Not authenticated", *, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)


class UserKeyRequiredError(CastorError):
    """The selected model only runs on a user-supplied key and none exists."""

    code = "USER_KEY_REQUIRED"

    def __init__(self, provider: str) -> None:
        super().__init__(
            self.code,
            hint=f"Add your {provider} API key in settings to use this model.",
        )
        self.provider = provider


class UsageLimitError(CastorError):
    """The account exhausted its daily, monthly, or premium quota."""

    def __init__(
        self,
        code: str = "DAILY_LIMIT_REACHED",
        *,
        hint: str | None = None,
    ) -> None:
        super().__init__(code, hint=hint)
        self.code = code


class InternalError(CastorError):
    """A Castor internal error (bug) or invariant violation."""


class APIError(CastorError):
    """Provider API call failed.

    Providers attach status and retry metadata so callers can log and
    classify failures without re-parsing SDK exception shapes.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class SearchError(CastorError):
    """A web search backend failed."""

    def __init__(
        self,
        message: str,
        provider: str,
        code: str = "SEARCH_ERROR",
    ) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.code = code


class SearchAuthenticationError(SearchError):
    """Search backend rejected the credential."""

    def __init__(self, provider: str, message: str = "Authentication failed") -> None:
        super().__init__(message, provider, "AUTH_ERROR")


class SearchNetworkError(SearchError):
    """Search backend could not be reached."""

    def __init__(self, provider: str, message: str = "Network request failed") -> None:
        super().__init__(message, provider, "NETWORK_ERROR")


class SearchRateLimitError(SearchError):
    """Search backend throttled the request."""

    def __init__(self, provider: str, message: str = "Rate limit exceeded") -> None:
        super().__init__(message, provider, "RATE_LIMIT_ERROR")


class SearchInvalidResponseError(SearchError):
    """Search backend returned a payload we could not read."""

    def __init__(
        self, provider: str, message: str = "Invalid response format"
    ) -> None:
        super().__init__(message, provider, "INVALID_RESPONSE")


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
