"""
System Constants and Enumerations

This module defines engine-wide constants and enumerations used across
permutation generation, scheduling, streaming and lifecycle tracking.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management
- Easy to update and track changes

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Engine stages used to tag structured log lines.

    Format: {PREFIX}_{DESCRIPTIVE_NAME}
    - PREFIX: short alphabetic code grepable in aggregated logs
    - DESCRIPTIVE_NAME: what the component is doing

    Examples:
        log_stage(logger, Stage.CIRCUIT_BREAKER, "Circuit tripped", provider="openai")
        # → stage="CB_CIRCUIT_BREAKER"
    """

    PERMUTATION_GENERATION = "PG_PERMUTATION_GENERATION"
    METADATA_BUILD = "PM_METADATA_BUILD"
    CIRCUIT_BREAKER = "CB_CIRCUIT_BREAKER"
    CONNECTION_POOL = "CP_CONNECTION_POOL"
    STREAMING = "ST_STREAMING"
    STATE_MACHINE = "SM_STATE_MACHINE"
    GENERATION_SESSION = "GS_GENERATION_SESSION"
    RETRY = "R_RETRY_LOGIC"


# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, requests allowed
    OPEN: Failing fast, requests blocked
    HALF_OPEN: Testing recovery, one trial request
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Scheduling Priority
# ============================================================================


class Priority(str, Enum):
    """
    Priority class of a possibility. Orders scheduling only, never results.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Lower rank is scheduled first."""
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}


# ============================================================================
# Stream Event Types
# ============================================================================


class StreamEventType(str, Enum):
    """
    Payload `type` values carried inside `data: <json>` frames.
    """

    POSSIBILITY_START = "possibility_start"
    TOKEN = "token"
    PROBABILITY = "probability"
    POSSIBILITY_COMPLETE = "possibility_complete"
    COMPLETE = "complete"  # legacy alias of possibility_complete
    ERROR = "error"
    DONE = "done"


# ============================================================================
# SSE Framing
# ============================================================================

SSE_DATA_PREFIX = "data: "
SSE_DONE_SENTINEL = "[DONE]"
SSE_MEDIA_TYPE = "text/event-stream"

# ============================================================================
# Default System Instruction
# ============================================================================

DEFAULT_SYSTEM_INSTRUCTION = {
    "id": "default",
    "name": "default",
    "content": (
        "You are a helpful, creative, and insightful AI assistant. You provide clear, "
        "accurate, and thoughtful responses while considering multiple perspectives."
    ),
    "enabled": True,
}

NO_INSTRUCTION_ID = "no-inst"

# ============================================================================
# Generation Defaults
# ============================================================================

DEFAULT_TEMPERATURES = (0.7,)
MAX_POSSIBILITY_MULTIPLIER = 10

# Loading time estimates (milliseconds) per provider
PROVIDER_BASE_LATENCY_MS = {
    "openai": 2000,
    "anthropic": 3000,
    "google": 2500,
    "mistral": 2000,
    "together": 1500,
}
DEFAULT_BASE_LATENCY_MS = 3000

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"

# Base URL of the in-process application when no EXECUTION_BASE_URL is set
IN_PROCESS_BASE_URL = "http://possibility-engine"
