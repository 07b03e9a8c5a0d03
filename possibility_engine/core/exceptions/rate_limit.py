"""
Rate Limit Exceptions

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class RateLimitError(PossibilityEngineError):
    """
    Raised when a provider rate-limits the engine.

    Carries the provider's suggested backoff (`retry_after`, seconds) which the
    generation session honours instead of its own exponential backoff.
    """

    error_type = ErrorType.RATE_LIMIT
    severity = ErrorSeverity.MEDIUM
    retryable = True

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details.setdefault("retry_after", retry_after)
