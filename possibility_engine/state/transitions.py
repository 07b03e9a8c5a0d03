"""
Transition Definitions

The complete transition table of the generation lifecycle. An event that has
no transition from the current state (or whose guards all fail) is rejected.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from possibility_engine.state.types import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    AllCompleted,
    ErrorOccurred,
    GenerationContext,
    GenerationEvent,
    GenerationEventType,
    GenerationState,
    RetryGeneration,
    StartGeneration,
    StreamingStarted,
)

Guard = Callable[[GenerationContext, GenerationEvent], bool]
Action = Callable[[GenerationContext, GenerationEvent], dict[str, Any]]


@dataclass(frozen=True)
class Transition:
    source: GenerationState
    target: GenerationState
    event: GenerationEventType
    guard: Guard | None = None
    action: Action | None = None


def create_initial_context(max_retries: int) -> GenerationContext:
    return GenerationContext(max_retries=max_retries)


def build_transitions(clock: Callable[[], float]) -> list[Transition]:
    """Build the table. `clock` stamps start_time / last_activity."""

    def touch(context: GenerationContext, event: GenerationEvent) -> dict[str, Any]:
        return {"last_activity": clock()}

    def start(context: GenerationContext, event: StartGeneration) -> dict[str, Any]:
        now = clock()
        return {
            **create_initial_context(context.max_retries).model_dump(),
            "request_id": event.request_id,
            "possibility_count": event.possibility_count,
            "start_time": now,
            "last_activity": now,
        }

    def streaming_started(context: GenerationContext, event: StreamingStarted) -> dict[str, Any]:
        return {"active_streams": event.active_streams, "last_activity": clock()}

    def possibility_completed(context: GenerationContext, event: GenerationEvent) -> dict[str, Any]:
        return {"completed_count": context.completed_count + 1, "last_activity": clock()}

    def all_completed_guard(context: GenerationContext, event: AllCompleted) -> bool:
        return event.total_completed == context.possibility_count

    def all_completed(context: GenerationContext, event: AllCompleted) -> dict[str, Any]:
        return {
            "completed_count": event.total_completed,
            "active_streams": 0,
            "last_activity": clock(),
        }

    def should_fail(context: GenerationContext, event: ErrorOccurred) -> bool:
        return not event.retryable or context.retry_attempt >= context.max_retries

    def should_hold(context: GenerationContext, event: ErrorOccurred) -> bool:
        return not should_fail(context, event)

    def record_error(context: GenerationContext, event: ErrorOccurred) -> dict[str, Any]:
        return {"errors": [*context.errors, event.error], "last_activity": clock()}

    def retry_guard(context: GenerationContext, event: GenerationEvent) -> bool:
        return context.retry_attempt < context.max_retries

    def retry(context: GenerationContext, event: RetryGeneration) -> dict[str, Any]:
        return {"retry_attempt": event.attempt, "errors": [], "last_activity": clock()}

    def cancel(context: GenerationContext, event: GenerationEvent) -> dict[str, Any]:
        return {"active_streams": 0, "last_activity": clock()}

    def reset(context: GenerationContext, event: GenerationEvent) -> dict[str, Any]:
        return create_initial_context(context.max_retries).model_dump()

    S = GenerationState
    E = GenerationEventType

    transitions = [
        Transition(S.IDLE, S.INITIALIZING, E.START_GENERATION, action=start),
        Transition(S.INITIALIZING, S.GENERATING, E.GENERATION_INITIALIZED, action=touch),
        Transition(S.GENERATING, S.STREAMING, E.STREAMING_STARTED, action=streaming_started),
        Transition(S.STREAMING, S.STREAMING, E.TOKEN_RECEIVED, action=touch),
        Transition(S.STREAMING, S.STREAMING, E.POSSIBILITY_COMPLETED,
                   action=possibility_completed),
        Transition(S.STREAMING, S.COMPLETED, E.ALL_COMPLETED,
                   guard=all_completed_guard, action=all_completed),
    ]

    # Errors: escalate when non-retryable or out of retries, otherwise record and hold
    for source in (S.GENERATING, S.STREAMING):
        transitions.append(
            Transition(source, S.FAILED, E.ERROR_OCCURRED, guard=should_fail, action=record_error)
        )
        transitions.append(
            Transition(source, source, E.ERROR_OCCURRED, guard=should_hold, action=record_error)
        )

    for source in (S.GENERATING, S.FAILED):
        transitions.append(
            Transition(source, S.INITIALIZING, E.RETRY_GENERATION, guard=retry_guard, action=retry)
        )

    for source in (S.GENERATING, S.STREAMING):
        transitions.append(Transition(source, S.CANCELLED, E.CANCEL_GENERATION, action=cancel))

    for source in (*TERMINAL_STATES, *ACTIVE_STATES):
        transitions.append(Transition(source, S.IDLE, E.RESET, action=reset))

    return transitions
