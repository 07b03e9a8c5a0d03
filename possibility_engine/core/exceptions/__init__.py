"""
Exception Module

Structured exception hierarchy for the possibility engine. Every exception
carries its taxonomy category (`error_type`), a `severity` and a `retryable`
flag, so retry orchestration and metrics never inspect exception messages.

Module Structure:
-----------------
- **base.py**: PossibilityEngineError base class, ErrorType/ErrorSeverity, ConfigurationError
- **validation.py**: Input validation (never retried)
- **network.py**: Network / timeout / connection failures (retryable)
- **provider.py**: Provider status errors, authentication, all-providers-unavailable
- **rate_limit.py**: Rate limiting with suggested backoff
- **streaming.py**: Stream interruption and frame parsing
- **circuit_breaker.py**: Breaker open (fail fast)
- **connection_pool.py**: Task aborted by the scheduler
- **classification.py**: UnknownError, classify_error(), is_retryable_error()

Usage:
------
```python
from possibility_engine.core.exceptions import ProviderError, classify_error

try:
    await execute()
except Exception as exc:
    error = classify_error(exc, provider="openai")
    if error.retryable:
        ...
```

Author: System Architect
Date: 2025-12-08
"""

from possibility_engine.core.exceptions.base import (
    ConfigurationError,
    ErrorSeverity,
    ErrorType,
    PossibilityEngineError,
)
from possibility_engine.core.exceptions.circuit_breaker import CircuitBreakerOpenError
from possibility_engine.core.exceptions.classification import (
    UnknownError,
    classify_error,
    error_from_status,
    is_retryable_error,
)
from possibility_engine.core.exceptions.connection_pool import TaskAbortedError
from possibility_engine.core.exceptions.network import (
    NetworkError,
    ProviderConnectionError,
    ProviderTimeoutError,
)
from possibility_engine.core.exceptions.provider import (
    AllProvidersUnavailableError,
    ProviderAuthenticationError,
    ProviderError,
    is_retryable_status,
)
from possibility_engine.core.exceptions.rate_limit import RateLimitError
from possibility_engine.core.exceptions.streaming import ParsingError, StreamingError
from possibility_engine.core.exceptions.validation import ValidationError

__all__ = [
    # Base
    "PossibilityEngineError",
    "ErrorType",
    "ErrorSeverity",
    "ConfigurationError",
    # Validation
    "ValidationError",
    # Transport
    "NetworkError",
    "ProviderTimeoutError",
    "ProviderConnectionError",
    # Provider
    "ProviderError",
    "ProviderAuthenticationError",
    "AllProvidersUnavailableError",
    "is_retryable_status",
    # Rate Limit
    "RateLimitError",
    # Streaming
    "StreamingError",
    "ParsingError",
    # Circuit Breaker
    "CircuitBreakerOpenError",
    # Connection Pool
    "TaskAbortedError",
    # Classification
    "UnknownError",
    "classify_error",
    "error_from_status",
    "is_retryable_error",
]
