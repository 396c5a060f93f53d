"""Error classifier: map any raised value to a kind, status, and display policy.

``classify`` is total. The kind → status/policy/message mappings are fixed
tables; only the kind itself is decided by matching.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Any, Literal

from castor.errors import (
    APIError,
    RateLimitError,
    UsageLimitError,
    UserKeyRequiredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DisplayPolicy = Literal["conversation", "toast", "both"]


class ErrorKind(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    USER_KEY_ERROR = "USER_KEY_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    USAGE_LIMIT = "USAGE_LIMIT"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    CONTEXT_TOO_LONG = "CONTEXT_TOO_LONG"
    TIMEOUT = "TIMEOUT"
    TOOL_ERROR = "TOOL_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.AUTH_ERROR: 401,
    ErrorKind.USER_KEY_ERROR: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.USAGE_LIMIT: 403,
    ErrorKind.MODEL_UNAVAILABLE: 503,
    ErrorKind.CONTENT_FILTERED: 422,
    ErrorKind.CONTEXT_TOO_LONG: 413,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.TOOL_ERROR: 502,
    ErrorKind.GENERATION_ERROR: 502,
    ErrorKind.SYSTEM_ERROR: 500,
}

DISPLAY_POLICY: dict[ErrorKind, DisplayPolicy] = {
    ErrorKind.VALIDATION_ERROR: "toast",
    ErrorKind.AUTH_ERROR: "toast",
    ErrorKind.USER_KEY_ERROR: "conversation",
    ErrorKind.RATE_LIMIT: "conversation",
    ErrorKind.USAGE_LIMIT: "conversation",
    ErrorKind.MODEL_UNAVAILABLE: "conversation",
    ErrorKind.CONTENT_FILTERED: "conversation",
    ErrorKind.CONTEXT_TOO_LONG: "conversation",
    ErrorKind.TIMEOUT: "conversation",
    ErrorKind.TOOL_ERROR: "conversation",
    ErrorKind.GENERATION_ERROR: "conversation",
    ErrorKind.SYSTEM_ERROR: "conversation",
}

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION_ERROR: "Please check your input and try again.",
    ErrorKind.AUTH_ERROR: "Authentication required. Please sign in.",
    ErrorKind.USER_KEY_ERROR: (
        "API key for this model is missing or invalid. "
        "Please check your API key settings."
    ),
    ErrorKind.RATE_LIMIT: (
        "I'm currently experiencing rate limits. Please try again in a moment."
    ),
    ErrorKind.USAGE_LIMIT: (
        "You've reached your usage limit. "
        "Please upgrade or wait for the limit to reset."
    ),
    ErrorKind.MODEL_UNAVAILABLE: (
        "The selected model is currently unavailable. Please try a different model."
    ),
    ErrorKind.CONTENT_FILTERED: (
        "Your request was blocked by content filters. "
        "Please try rephrasing your message."
    ),
    ErrorKind.CONTEXT_TOO_LONG: (
        "The conversation is too long. Please start a new chat "
        "or use a model with a larger context window."
    ),
    ErrorKind.TIMEOUT: "The request timed out. Please try again.",
    ErrorKind.TOOL_ERROR: (
        "I encountered an error while searching. Continuing without search results."
    ),
    ErrorKind.GENERATION_ERROR: (
        "I encountered an error while generating a response. Please try again."
    ),
    ErrorKind.SYSTEM_ERROR: "An unexpected error occurred. Please try again.",
}

# First match wins; order matters.
_PATTERNS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.RATE_LIMIT, ("rate limit", "quota exceeded", "too many requests")),
    (ErrorKind.MODEL_UNAVAILABLE, ("model not available", "model not found")),
    (ErrorKind.CONTENT_FILTERED, ("content filter", "safety", "blocked")),
    (ErrorKind.CONTEXT_TOO_LONG, ("context length", "token limit", "too long")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out", "aborted")),
    (ErrorKind.TOOL_ERROR, ("search", "tool")),
    (
        ErrorKind.AUTH_ERROR,
        ("authentication", "not authenticated", "unauthorized"),
    ),
    (
        ErrorKind.USER_KEY_ERROR,
        (
            "user_key_required",
            "invalid api key",
            "api key is missing",
            "missing api key",
        ),
    ),
    (
        ErrorKind.USAGE_LIMIT,
        (
            "daily_limit_reached",
            "monthly_limit_reached",
            "premium_limit_reached",
            "usage limit",
        ),
    ),
    (ErrorKind.VALIDATION_ERROR, ("validation", "invalid", "required")),
    (ErrorKind.GENERATION_ERROR, ("generation", "completion", "response")),
)


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    raw_message: str
    user_facing_message: str
    http_status: int
    display_policy: DisplayPolicy

    @property
    def in_conversation(self) -> bool:
        return self.display_policy in ("conversation", "both")

    @property
    def as_toast(self) -> bool:
        return self.display_policy in ("toast", "both")


def normalize_error(value: Any) -> str:
    """Reduce any raised value to its raw message, unwrapping ``{error, cause}`` shapes."""
    inner: Any = None
    if isinstance(value, dict):
        inner = value.get("error")
    elif not isinstance(value, BaseException):
        inner = getattr(value, "error", None)
    if isinstance(inner, BaseException):
        value = inner
    elif isinstance(inner, str) and inner:
        return inner

    if value is None:
        return "Unknown error"
    if isinstance(value, BaseException):
        return str(value) or type(value).__name__
    try:
        return str(value)
    except Exception:
        return repr(value)


def _is_rate_limiter_shape(value: Any) -> bool:
    if isinstance(value, RateLimitError):
        return True
    if isinstance(value, APIError) and value.status_code == 429:
        return True
    if isinstance(value, dict):
        return value.get("kind") == "RateLimited"
    return getattr(value, "kind", None) == "RateLimited"


def _from_kind(kind: ErrorKind, raw_message: str) -> ClassifiedError:
    return ClassifiedError(
        kind=kind,
        raw_message=raw_message,
        user_facing_message=USER_MESSAGES[kind],
        http_status=HTTP_STATUS[kind],
        display_policy=DISPLAY_POLICY[kind],
    )


def classify(error: Any) -> ClassifiedError:
    """Classify *error*. Never raises."""
    try:
        raw_message = normalize_error(error)
        if _is_rate_limiter_shape(error):
            return _from_kind(ErrorKind.RATE_LIMIT, raw_message)
        lowered = raw_message.lower()
        for kind, needles in _PATTERNS:
            if any(needle in lowered for needle in needles):
                return _from_kind(kind, raw_message)
        return _from_kind(ErrorKind.SYSTEM_ERROR, raw_message)
    except Exception:
        logger.exception("Error classification failed")
        return _from_kind(ErrorKind.SYSTEM_ERROR, "Unknown error")


def create_error_part(classified: ClassifiedError) -> dict[str, Any]:
    """Render a persisted ``error`` message part."""
    error: dict[str, Any] = {
        "code": str(classified.kind),
        "message": classified.user_facing_message,
    }
    if classified.raw_message:
        error["rawError"] = classified.raw_message
    return {"type": "error", "error": error}


def should_show_in_conversation(error: Any) -> bool:
    return classify(error).in_conversation


def should_show_as_toast(error: Any) -> bool:
    return classify(error).as_toast


@dataclass(frozen=True)
class ErrorResponse:
    """Transport-neutral HTTP error: a status and a JSON body."""

    status: int
    body: dict[str, Any]


def error_response(error: Any) -> ErrorResponse:
    """Map a failure that escaped the pipeline to its outward HTTP response."""
    if isinstance(error, ValidationError):
        return ErrorResponse(400, {"error": str(error)})
    if isinstance(error, UserKeyRequiredError):
        return ErrorResponse(
            401,
            {"error": UserKeyRequiredError.code, "message": error.hint or str(error)},
        )
    if isinstance(error, UsageLimitError):
        return ErrorResponse(403, {"error": str(error), "code": "LIMIT_REACHED"})

    classified = classify(error)
    if classified.in_conversation:
        return ErrorResponse(
            400,
            {
                "error": {
                    "type": str(classified.kind),
                    "message": classified.user_facing_message,
                }
            },
        )
    return ErrorResponse(
        classified.http_status, {"error": classified.user_facing_message}
    )
