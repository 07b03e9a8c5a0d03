"""
Generation Lifecycle

- **types.py**: States, events, context and status
- **transitions.py**: The transition table
- **state_machine.py**: GenerationStateMachine
"""

from .state_machine import GenerationStateMachine
from .types import (
    AllCompleted,
    CancelGeneration,
    ErrorOccurred,
    GenerationContext,
    GenerationEvent,
    GenerationEventType,
    GenerationInitialized,
    GenerationState,
    MachineStatus,
    PossibilityCompleted,
    Reset,
    RetryGeneration,
    StartGeneration,
    StreamingStarted,
    TokenReceived,
)

__all__ = [
    "AllCompleted",
    "CancelGeneration",
    "ErrorOccurred",
    "GenerationContext",
    "GenerationEvent",
    "GenerationEventType",
    "GenerationInitialized",
    "GenerationState",
    "GenerationStateMachine",
    "MachineStatus",
    "PossibilityCompleted",
    "Reset",
    "RetryGeneration",
    "StartGeneration",
    "StreamingStarted",
    "TokenReceived",
]
