"""
Error Classification

Maps arbitrary exceptions (httpx transport errors, orjson decode errors,
plain exceptions raised by collaborators) onto the engine's error taxonomy so
retry decisions never depend on where an error came from.

Author: System Architect
Date: 2025-12-08
"""

import asyncio
from typing import Any

import httpx
import orjson

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)
from possibility_engine.core.exceptions.network import (
    NetworkError,
    ProviderConnectionError,
    ProviderTimeoutError,
)
from possibility_engine.core.exceptions.provider import (
    ProviderAuthenticationError,
    ProviderError,
)
from possibility_engine.core.exceptions.rate_limit import RateLimitError
from possibility_engine.core.exceptions.streaming import ParsingError

DEFAULT_RATE_LIMIT_BACKOFF = 60.0


class UnknownError(PossibilityEngineError):
    """Catch-all for errors that match no other category. Never retried."""

    error_type = ErrorType.UNKNOWN
    severity = ErrorSeverity.HIGH
    retryable = False


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def error_from_status(
    status_code: int,
    provider: str | None = None,
    reason: str | None = None,
    headers: Any = None,
    **details,
) -> PossibilityEngineError:
    """
    Build the taxonomy error for a non-2xx execution response.

    401/403 → ProviderAuthenticationError, 429 → RateLimitError (honouring a
    Retry-After header), everything else → ProviderError(status_code).
    """
    message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
    if provider:
        details.setdefault("provider", provider)

    if status_code in (401, 403):
        return ProviderAuthenticationError(
            message, provider=provider, status_code=status_code, details=details
        )
    if status_code == 429:
        retry_after = _parse_retry_after(headers.get("retry-after") if headers else None)
        return RateLimitError(
            message,
            retry_after=retry_after if retry_after is not None else DEFAULT_RATE_LIMIT_BACKOFF,
            details={**details, "status_code": status_code},
        )
    return ProviderError(message, provider=provider, status_code=status_code, details=details)


def classify_error(exc: BaseException, **metadata) -> PossibilityEngineError:
    """
    Classify any exception into the engine taxonomy.

    Engine errors are returned unchanged. httpx exceptions are mapped by type;
    anything else falls back to message heuristics (timeout, network/fetch,
    connection, auth, rate limit, parse/json/syntax) and finally UnknownError.
    """
    if isinstance(exc, PossibilityEngineError):
        if metadata:
            exc.with_context(**metadata)
        return exc

    # Transport layer
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError.from_exception(exc, message=str(exc) or "Request timed out",
                                                   **metadata)
    if isinstance(exc, httpx.ConnectError):
        return ProviderConnectionError.from_exception(exc, **metadata)
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(
            exc.response.status_code,
            reason=exc.response.reason_phrase,
            headers=exc.response.headers,
            **metadata,
        )
    if isinstance(exc, (httpx.TransportError, httpx.StreamError)):
        return NetworkError.from_exception(exc, **metadata)
    if isinstance(exc, orjson.JSONDecodeError):
        return ParsingError.from_exception(exc, **metadata)

    message = str(exc).lower()

    if "timeout" in message or "timed out" in message:
        return ProviderTimeoutError.from_exception(exc, **metadata)
    if "network" in message or "fetch" in message:
        return NetworkError.from_exception(exc, **metadata)
    if "connection" in message or "connect" in message:
        return ProviderConnectionError.from_exception(exc, **metadata)
    if "auth" in message or "unauthorized" in message:
        error = ProviderAuthenticationError(str(exc), details=metadata)
        return error.with_context(original_error=exc.__class__.__name__)
    if "rate limit" in message or "too many requests" in message:
        error = RateLimitError(str(exc), retry_after=DEFAULT_RATE_LIMIT_BACKOFF, details=metadata)
        return error.with_context(original_error=exc.__class__.__name__)
    if "parse" in message or "json" in message or "syntax" in message:
        return ParsingError.from_exception(exc, **metadata)

    return UnknownError.from_exception(exc, **metadata)


def is_retryable_error(exc: BaseException) -> bool:
    """True when the exception (after classification) may be retried."""
    return classify_error(exc).retryable
