"""
Provider Exceptions

Errors reported by the provider-fronting endpoint (OpenAI, Anthropic, Google, ...).

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status_code: int | None) -> bool:
    """5xx, 429 and 408 are transient; every other status is final."""
    if status_code is None:
        return False
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


class ProviderError(PossibilityEngineError):
    """
    Raised when a provider returns an error status.

    Retryability and severity follow the status code:
    - 5xx: retryable, high severity
    - 429 / 408: retryable, medium severity
    - other 4xx: not retryable, medium severity
    - no status: not retryable, low severity
    """

    error_type = ErrorType.PROVIDER

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.provider = provider
        self.status_code = status_code
        self.retryable = is_retryable_status(status_code)
        if status_code is not None and status_code >= 500:
            self.severity = ErrorSeverity.HIGH
        elif status_code is not None and status_code >= 400:
            self.severity = ErrorSeverity.MEDIUM
        else:
            self.severity = ErrorSeverity.LOW
        if provider:
            self.details.setdefault("provider", provider)
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class ProviderAuthenticationError(ProviderError):
    """
    Raised when provider authentication fails.

    Common causes:
    - Invalid or expired API key
    - Insufficient permissions
    """

    error_type = ErrorType.AUTHENTICATION

    def __init__(self, message: str, provider: str | None = None, **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(message, provider=provider, **kwargs)
        self.retryable = False
        self.severity = ErrorSeverity.HIGH


class AllProvidersUnavailableError(PossibilityEngineError):
    """
    Raised when every provider targeted by a generation has an open breaker.

    Retryable: breakers move to half-open once their cooldown elapses, so the
    caller may retry after `retry_after` seconds.
    """

    error_type = ErrorType.CIRCUIT_OPEN
    severity = ErrorSeverity.HIGH
    retryable = True

    def __init__(
        self,
        message: str,
        providers: list[str] | None = None,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.providers = list(providers or [])
        self.retry_after = retry_after
        self.details.setdefault("providers", self.providers)
        if retry_after is not None:
            self.details.setdefault("retry_after", retry_after)
