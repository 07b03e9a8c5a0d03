"""
Generation Lifecycle State Machine

Finite state machine for one generation request. Every lifecycle change goes
through `send()`; an event is accepted only if a transition exists from the
current state and its guard passes. Accepted transitions apply their context
action, then notify listeners with (new_state, old_state, context, event).

    idle -> initializing -> generating -> streaming -> completed
                                |  ^          |
                                v  |          v
                              failed       cancelled

Rejected events are logged at warning level and leave state and context
untouched.

Author: System Architect
Date: 2025-12-09
"""

import time
from collections import defaultdict
from collections.abc import Callable

from possibility_engine.core.config.constants import Stage
from possibility_engine.core.config.settings import get_settings
from possibility_engine.core.logging.logger import get_logger, log_stage
from possibility_engine.state.transitions import (
    Transition,
    build_transitions,
    create_initial_context,
)
from possibility_engine.state.types import (
    ACTIVE_STATES,
    GenerationContext,
    GenerationEvent,
    GenerationEventType,
    GenerationState,
    MachineStatus,
    StateChangeListener,
)

logger = get_logger(__name__)


class GenerationStateMachine:
    """
    Lifecycle state machine.

    Args:
        max_retries: Retry ceiling (default: GENERATION_MAX_RETRIES)
        clock: Wall-clock time source in seconds (default: time.time)
    """

    def __init__(
        self,
        max_retries: int | None = None,
        clock: Callable[[], float] | None = None,
    ):
        if max_retries is None:
            max_retries = get_settings().generation.GENERATION_MAX_RETRIES
        self._clock = clock or time.time
        self._state = GenerationState.IDLE
        self._context = create_initial_context(max_retries)
        self._listeners: list[StateChangeListener] = []

        self._transitions: dict[
            tuple[GenerationState, GenerationEventType], list[Transition]
        ] = defaultdict(list)
        for transition in build_transitions(self._clock):
            self._transitions[(transition.source, transition.event)].append(transition)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def context(self) -> GenerationContext:
        """Copy of the current context."""
        return self._context.snapshot()

    def is_in(self, *states: GenerationState) -> bool:
        return self._state in states

    def can(self, event_type: GenerationEventType) -> bool:
        """Whether any transition for `event_type` leaves the current state (guards ignored)."""
        return bool(self._transitions.get((self._state, event_type)))

    def get_status(self) -> MachineStatus:
        ctx = self._context
        progress = (
            ctx.completed_count / ctx.possibility_count * 100 if ctx.possibility_count else 0.0
        )
        duration = self._clock() - ctx.start_time if ctx.start_time is not None else None
        can_retry = ctx.retry_attempt < ctx.max_retries and (
            self._state == GenerationState.FAILED or bool(ctx.errors)
        )
        return MachineStatus(
            state=self._state,
            progress=progress,
            duration=duration,
            is_active=self._state in ACTIVE_STATES,
            can_retry=can_retry,
            error_count=len(ctx.errors),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send(self, event: GenerationEvent) -> bool:
        """
        Apply `event`.

        Returns:
            True if a transition was taken, False if the event was rejected
        """
        candidates = self._transitions.get((self._state, event.type), [])
        if not candidates:
            log_stage(
                logger,
                Stage.STATE_MACHINE,
                "Event rejected: no transition from current state",
                level="warning",
                state=self._state.value,
                event_type=event.type.value,
            )
            return False

        transition = next(
            (t for t in candidates if t.guard is None or t.guard(self._context, event)),
            None,
        )
        if transition is None:
            log_stage(
                logger,
                Stage.STATE_MACHINE,
                "Event rejected: guard failed",
                level="warning",
                state=self._state.value,
                event_type=event.type.value,
            )
            return False

        old_state = self._state
        if transition.action is not None:
            self._context = self._context.model_copy(
                update=transition.action(self._context, event)
            )
        self._state = transition.target

        if old_state != self._state:
            log_stage(
                logger,
                Stage.STATE_MACHINE,
                "State transition",
                from_state=old_state.value,
                to_state=self._state.value,
                event_type=event.type.value,
                request_id=self._context.request_id,
            )

        self._notify(old_state, event)
        return True

    def reset(self) -> None:
        """Force the machine back to idle with a fresh context, from any state."""
        self._state = GenerationState.IDLE
        self._context = create_initial_context(self._context.max_retries)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateChangeListener) -> Callable[[], None]:
        """
        Register a listener for accepted transitions.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, old_state: GenerationState, event: GenerationEvent) -> None:
        context = self._context.snapshot()
        for listener in list(self._listeners):
            try:
                listener(self._state, old_state, context, event)
            except Exception as e:
                log_stage(
                    logger,
                    Stage.STATE_MACHINE,
                    "State listener failed",
                    level="error",
                    error=str(e),
                    error_type=type(e).__name__,
                )
