"""
Base Exception Class

This module contains the base exception class that all engine exceptions
inherit from, plus the enums that classify them. Specialized exceptions are in
their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Coarse error category used for retry decisions and metrics labels."""

    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    PROVIDER = "provider"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    STREAMING = "streaming"
    PARSING = "parsing"
    CIRCUIT_OPEN = "circuit_open"
    ABORTED = "aborted"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PossibilityEngineError(Exception):
    """
    Base exception for all possibility engine errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Request ID correlation
    - Retry decisions driven by the class (`retryable`)
    - Structured error logging

    Attributes:
        message: Error message
        request_id: Generation request ID for correlation (if available)
        details: Additional error details (dict)
        error_type: Taxonomy category
        severity: How loudly the error should be reported
        retryable: Whether the caller may retry the operation

    Example:
        raise ProviderError(
            "Upstream returned 503",
            provider="openai",
            status_code=503,
            request_id="abc-123",
        )
    """

    error_type: ErrorType = ErrorType.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    retryable: bool = False

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, severity, retryable, message, request_id and details
        """
        return {
            "error": self.__class__.__name__,
            "error_type": self.error_type.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "PossibilityEngineError":
        """
        Add a suggestion to help users fix the error.

        Returns:
            Self (for method chaining)
        """
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "PossibilityEngineError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        request_id: str | None = None,
        **details
    ) -> "PossibilityEngineError":
        """
        Create an engine error from another exception.

        Useful for wrapping third-party exceptions (httpx, orjson) with
        additional context.

        Example:
            >>> try:
            ...     await client.post(url)
            ... except httpx.ConnectError as e:
            ...     raise ProviderConnectionError.from_exception(e, provider="openai")
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(PossibilityEngineError):
    """Raised when configuration is invalid or missing."""

    error_type = ErrorType.CONFIGURATION
    severity = ErrorSeverity.HIGH
