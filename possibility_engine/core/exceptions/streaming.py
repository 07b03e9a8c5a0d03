"""
Streaming Exceptions

Failures isolated to one possibility's event stream.

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class StreamingError(PossibilityEngineError):
    """
    Raised when a possibility stream is interrupted or reports an error frame.

    Sibling possibilities keep streaming.
    """

    error_type = ErrorType.STREAMING
    severity = ErrorSeverity.MEDIUM
    retryable = True


class ParsingError(PossibilityEngineError):
    """Raised when a frame cannot be decoded."""

    error_type = ErrorType.PARSING
    severity = ErrorSeverity.LOW
    retryable = False
