"""
Resilience Layer

- **circuit_breaker.py**: Per-provider circuit breakers and their registry
- **connection_pool.py**: Priority-ordered bounded-concurrency task pool
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .connection_pool import PoolTask, PriorityConnectionPool

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "PoolTask",
    "PriorityConnectionPool",
]
