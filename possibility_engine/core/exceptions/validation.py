"""
Validation Exceptions

Raised for bad or empty generation input. Validation fails fast, before any
scheduling, and is never retried.

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)


class ValidationError(PossibilityEngineError):
    """
    Raised when generation input validation fails.

    Common causes:
    - Empty message list
    - Message without a role or content
    - Permutation id in the body does not match the URL
    """

    error_type = ErrorType.VALIDATION
    severity = ErrorSeverity.LOW
    retryable = False
