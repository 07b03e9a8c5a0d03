"""
Transport Exceptions

Transient failures between the engine and the provider-fronting endpoint.
All of them are retryable.

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class NetworkError(PossibilityEngineError):
    """Raised when a request fails at the network layer."""

    error_type = ErrorType.NETWORK
    severity = ErrorSeverity.MEDIUM
    retryable = True


class ProviderTimeoutError(NetworkError):
    """
    Raised when an execution request times out.

    Common causes:
    - Slow provider response
    - Reasoning model exceeding the read timeout
    """

    error_type = ErrorType.TIMEOUT


class ProviderConnectionError(NetworkError):
    """Raised when the execution endpoint cannot be reached."""

    error_type = ErrorType.CONNECTION
