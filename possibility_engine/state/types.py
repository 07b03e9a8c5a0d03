"""
State Machine Types

Core type definitions for the generation lifecycle state machine: states,
events, context and status.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class GenerationState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    GENERATING = "generating"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = frozenset({
    GenerationState.INITIALIZING,
    GenerationState.GENERATING,
    GenerationState.STREAMING,
})

TERMINAL_STATES = frozenset({
    GenerationState.COMPLETED,
    GenerationState.FAILED,
    GenerationState.CANCELLED,
})


class GenerationEventType(str, Enum):
    START_GENERATION = "START_GENERATION"
    GENERATION_INITIALIZED = "GENERATION_INITIALIZED"
    STREAMING_STARTED = "STREAMING_STARTED"
    TOKEN_RECEIVED = "TOKEN_RECEIVED"
    POSSIBILITY_COMPLETED = "POSSIBILITY_COMPLETED"
    ALL_COMPLETED = "ALL_COMPLETED"
    ERROR_OCCURRED = "ERROR_OCCURRED"
    CANCEL_GENERATION = "CANCEL_GENERATION"
    RETRY_GENERATION = "RETRY_GENERATION"
    RESET = "RESET"


# ============================================================================
# Events
# ============================================================================


class GenerationEvent(BaseModel):
    """Base event. Subclasses pin `event_type`."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event_type: ClassVar[GenerationEventType]
    request_id: str | None = None

    @property
    def type(self) -> GenerationEventType:
        return self.event_type


class StartGeneration(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.START_GENERATION
    possibility_count: int = Field(..., ge=0)


class GenerationInitialized(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.GENERATION_INITIALIZED


class StreamingStarted(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.STREAMING_STARTED
    active_streams: int = Field(..., ge=0)


class TokenReceived(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.TOKEN_RECEIVED
    possibility_id: str
    token: str = ""


class PossibilityCompleted(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.POSSIBILITY_COMPLETED
    possibility_id: str


class AllCompleted(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.ALL_COMPLETED
    total_completed: int = Field(..., ge=0)


class ErrorOccurred(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.ERROR_OCCURRED
    error: BaseException
    retryable: bool = False


class CancelGeneration(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.CANCEL_GENERATION
    reason: str = "cancelled"


class RetryGeneration(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.RETRY_GENERATION
    attempt: int = Field(..., ge=1)


class Reset(GenerationEvent):
    event_type: ClassVar[GenerationEventType] = GenerationEventType.RESET


# ============================================================================
# Context and status
# ============================================================================


class GenerationContext(BaseModel):
    """
    Lifecycle context. Reset on START_GENERATION and RESET; `errors`
    accumulates and is cleared on retry.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request_id: str | None = None
    possibility_count: int = 0
    completed_count: int = 0
    active_streams: int = 0
    errors: list[BaseException] = Field(default_factory=list)
    retry_attempt: int = 0
    max_retries: int = 3
    start_time: float | None = None
    last_activity: float | None = None

    def snapshot(self) -> "GenerationContext":
        return self.model_copy(update={"errors": list(self.errors)})


class MachineStatus(BaseModel):
    state: GenerationState
    progress: float
    duration: float | None
    is_active: bool
    can_retry: bool
    error_count: int


StateChangeListener = Callable[
    [GenerationState, GenerationState, GenerationContext, GenerationEvent], Any
]
