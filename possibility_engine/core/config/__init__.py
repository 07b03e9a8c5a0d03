"""
Configuration Module

Centralized, type-safe configuration for the possibility engine.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Engine-wide constants and enums (Stage, CircuitState, Priority, ...)

Usage:
------
```python
from possibility_engine.core.config import get_settings
from possibility_engine.core.config.constants import Priority, CircuitState

settings = get_settings()
max_in_flight = settings.pool.POOL_MAX_CONCURRENCY
```
"""

from .constants import (
    DEFAULT_SYSTEM_INSTRUCTION,
    CircuitState,
    Priority,
    Stage,
    StreamEventType,
)
from .settings import Settings, get_settings, reload_settings

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "Stage",
    "CircuitState",
    "Priority",
    "StreamEventType",
    "DEFAULT_SYSTEM_INSTRUCTION",
]
