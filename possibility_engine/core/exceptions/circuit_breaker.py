"""
Circuit Breaker Exceptions

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class CircuitBreakerOpenError(PossibilityEngineError):
    """
    Raised when a provider's circuit breaker is open (fail fast).

    The wrapped operation was NOT invoked. This is distinct from a genuine
    provider error so callers can tell the two apart. The breaker moves to
    half-open after its recovery timeout, at which point one trial call is
    allowed through.
    """

    error_type = ErrorType.CIRCUIT_OPEN
    severity = ErrorSeverity.MEDIUM
    retryable = True

    def __init__(self, message: str, breaker_name: str | None = None,
                 retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        if breaker_name:
            self.details.setdefault("breaker", breaker_name)
        if retry_after is not None:
            self.details.setdefault("retry_after", round(retry_after, 3))
