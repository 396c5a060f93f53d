"""Provider-side error normalization.

Every SDK failure leaves a provider as an ``APIError`` carrying the HTTP
status, a retry-after hint, and whether a fresh attempt could succeed. The
classifier and the fallback log read those fields instead of SDK types.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import re
from typing import Any

import httpx

from castor.config import platform_key_env_var
from castor.errors import APIError, RateLimitError, _walk_exception_chain

#: Statuses worth a second attempt on the complementary credential.
TRANSIENT_STATUSES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# google.rpc.RetryInfo durations look like "8s" or "8.35s".
_DURATION = re.compile(r"^(\d+(?:\.\d+)?)s$")


@dataclass(frozen=True)
class _Facts:
    status_code: int | None = None
    retry_after_s: float | None = None
    transport_failure: bool = False


def _http_status(value: Any) -> int | None:
    if isinstance(value, int) and 100 <= value <= 599:
        return value
    return None


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "code"):
        status = _http_status(getattr(exc, attr, None))
        if status is not None:
            return status
    return _http_status(getattr(getattr(exc, "response", None), "status_code", None))


def _retry_after_header(exc: BaseException) -> float | None:
    headers: Any = getattr(getattr(exc, "response", None), "headers", None)
    if headers is None:
        return None
    try:
        raw = headers.get("Retry-After")
    except (AttributeError, TypeError):
        return None
    if not isinstance(raw, str):
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _retry_info_delay(exc: BaseException) -> float | None:
    """Read ``retryDelay`` from a google-genai error's parsed ``details`` body."""
    details: Any = getattr(exc, "details", None)
    error = details.get("error") if isinstance(details, dict) else None
    entries = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION.match(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def _retry_after_of(exc: BaseException) -> float | None:
    value = getattr(exc, "retry_after", None)
    if isinstance(value, (int, float)) and value >= 0:
        return float(value)
    header = _retry_after_header(exc)
    if header is not None:
        return header
    return _retry_info_delay(exc)


def _collect_facts(exc: BaseException) -> _Facts:
    """Walk the cause chain once, keeping the first status and delay found."""
    status: int | None = None
    delay: float | None = None
    transport = False
    for e in _walk_exception_chain(exc):
        if status is None:
            status = _status_of(e)
        if delay is None:
            delay = _retry_after_of(e)
        transport = transport or isinstance(e, httpx.TransportError | httpx.TimeoutException)
    return _Facts(status_code=status, retry_after_s=delay, transport_failure=transport)


def extract_retry_after_s(exc: BaseException) -> float | None:
    """First retry-after delay (attribute, header, or RetryInfo) in the chain."""
    return _collect_facts(exc).retry_after_s


def _key_hint(provider: str, status_code: int | None, cause: str) -> str | None:
    lowered = cause.lower()
    key_problem = status_code in (401, 403) or (
        status_code == 400 and ("api key" in lowered or "api_key" in lowered)
    )
    if not key_problem:
        return None
    return f"Check the user key in settings, or set {platform_key_env_var(provider)}."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Normalize an SDK exception into ``APIError`` (``RateLimitError`` on 429).

    An ``APIError`` passes through with only its missing context filled in.
    Cancellation is re-raised, never wrapped.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        if exc.hint is None:
            exc.hint = hint
        return exc

    facts = _collect_facts(exc)
    retryable = (
        facts.retry_after_s is not None
        or facts.status_code in TRANSIENT_STATUSES
        or facts.transport_failure
    )

    prefix = message or f"{provider} {phase} failed"
    if facts.status_code is not None:
        prefix = f"{prefix} (status={facts.status_code})"
    cause = str(exc)

    error_type = RateLimitError if facts.status_code == 429 else APIError
    return error_type(
        f"{prefix}: {cause}" if cause else prefix,
        hint=hint if hint is not None else _key_hint(provider, facts.status_code, cause),
        retryable=retryable,
        status_code=facts.status_code,
        retry_after_s=facts.retry_after_s,
        provider=provider,
        phase=phase,
    )
