"""
Circuit Breaker and Resilience Layer for AI Providers.

This module implements a per-provider circuit breaker designed for streaming
possibility execution, where the outcome of a call is only known after the
whole event stream has been consumed.

MECHANISM OF ACTION:
-------------------
1.  **Process-wide State**:
    Breakers live in a `CircuitBreakerRegistry` owned by the application.
    Failure history outlives individual generation requests, so a provider that
    failed during one request keeps failing fast in the next one until its
    cooldown elapses. Each provider key has its own independent breaker.

2.  **State Transitions**:
    - **CLOSED**: The provider is healthy. Requests are allowed.
      - On Failure: consecutive failure counter increments.
      - On Success: consecutive failure counter resets to 0.
      - Threshold Reached: failures >= threshold, state transitions to OPEN.

    - **OPEN**: The provider is down. Requests are blocked immediately (Fail Fast).
      - Behavior: Raises `CircuitBreakerOpenError` without invoking the operation.
      - Recovery: After `recovery_timeout` seconds the state transitions to HALF-OPEN
        the next time it is observed.

    - **HALF-OPEN**: Probing mode.
      - Behavior: Allows exactly ONE trial request at a time. Concurrent callers
        are rejected as if the breaker were open.
      - On Success: State transitions back to CLOSED.
      - On Failure: State transitions back to OPEN and the cooldown restarts.

3.  **Explicit Recording**:
    Streaming callers use `should_allow_request()` before opening the stream and
    `record_success()` / `record_failure()` once it concludes. A call that is
    cancelled records neither; it calls `release()` to hand back a trial slot.
    Non-streaming callers use `execute()`, which does all three.

4.  **Injectable Clock**:
    Time is read through `clock` (default `time.monotonic`) so cooldown
    behaviour is testable without sleeping.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from possibility_engine.core.config.constants import CircuitState, Stage
from possibility_engine.core.config.settings import get_settings
from possibility_engine.core.exceptions import CircuitBreakerOpenError
from possibility_engine.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

StateChangeListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """
    In-process circuit breaker for one provider key.

    Args:
        name: Provider key (e.g. "openai")
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds the breaker stays open before a trial call
        clock: Monotonic time source
        on_state_change: Called with (name, new_state, old_state) on every transition
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        clock: Callable[[], float] | None = None,
        on_state_change: StateChangeListener | None = None,
    ):
        settings = get_settings()
        self.name = name
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else settings.circuit_breaker.CB_FAILURE_THRESHOLD
        )
        self.recovery_timeout = (
            recovery_timeout
            if recovery_timeout is not None
            else settings.circuit_breaker.CB_RECOVERY_TIMEOUT
        )
        self._clock = clock or time.monotonic
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_in_flight = False
        self._opened_at: float | None = None
        self._init_counters()

    def _init_counters(self) -> None:
        self._failure_count = 0
        self._success_count = 0
        self._total_attempts = 0
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None
        self._state_changes = 0
        self._state_changed_at = self._clock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._state_changes += 1
        self._state_changed_at = self._clock()
        if new_state == CircuitState.OPEN:
            self._opened_at = self._state_changed_at
        self._trial_in_flight = False

        level = "error" if new_state == CircuitState.OPEN else "info"
        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            f"Circuit '{self.name}' changed state to {new_state.value}",
            level=level,
            breaker=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            consecutive_failures=self._consecutive_failures,
        )

        if self._on_state_change is not None:
            try:
                self._on_state_change(self.name, new_state, old_state)
            except Exception as e:
                logger.warning("Circuit state listener failed", breaker=self.name, error=str(e))

    def _update_state(self) -> None:
        """Apply the time-based OPEN → HALF_OPEN transition."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.recovery_timeout:
            self._set_state(CircuitState.HALF_OPEN)

    def get_state(self) -> CircuitState:
        self._update_state()
        return self._state

    @property
    def state(self) -> CircuitState:
        return self.get_state()

    def is_healthy(self) -> bool:
        """A breaker is healthy only while closed."""
        return self.get_state() == CircuitState.CLOSED

    def retry_after(self) -> float:
        """Seconds until an open breaker admits a trial call (0 when not open)."""
        if self.get_state() != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(self.recovery_timeout - (self._clock() - self._opened_at), 0.0)

    # ------------------------------------------------------------------
    # Admission and recording
    # ------------------------------------------------------------------

    def should_allow_request(self) -> bool:
        """
        Decide whether a call may proceed, claiming the trial slot when half-open.

        Logic:
        1. CLOSED -> allow.
        2. OPEN and cooldown elapsed -> HALF_OPEN (see below).
        3. HALF_OPEN -> allow one caller, reject the rest until it reports back.
        4. OPEN -> reject.
        """
        state = self.get_state()

        if state == CircuitState.CLOSED:
            self._total_attempts += 1
            return True

        if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            self._total_attempts += 1
            log_stage(logger, Stage.CIRCUIT_BREAKER, f"Circuit '{self.name}' trial call allowed",
                      breaker=self.name)
            return True

        return False

    def ensure_allowed(self) -> None:
        """Like `should_allow_request`, but raises CircuitBreakerOpenError on rejection."""
        if not self.should_allow_request():
            raise CircuitBreakerOpenError(
                f"Circuit open for {self.name}",
                breaker_name=self.name,
                retry_after=self.retry_after(),
            )

    def record_success(self) -> None:
        """Record a concluded successful call. Closes a half-open breaker."""
        self._success_count += 1
        self._last_success_time = self._clock()
        self._consecutive_failures = 0
        self._trial_in_flight = False

        if self._state != CircuitState.CLOSED:
            log_stage(logger, Stage.CIRCUIT_BREAKER,
                      f"Circuit '{self.name}' recovered! Resetting to CLOSED.", breaker=self.name)
            self._set_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a concluded failed call. May open the breaker."""
        self._failure_count += 1
        self._consecutive_failures += 1
        self._last_failure_time = self._clock()
        self._trial_in_flight = False

        log_stage(
            logger,
            Stage.CIRCUIT_BREAKER,
            f"Circuit '{self.name}' recorded failure "
            f"({self._consecutive_failures}/{self.failure_threshold})",
            level="warning",
            breaker=self.name,
        )

        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._set_state(CircuitState.OPEN)

    def release(self) -> None:
        """Give back an admitted slot without recording an outcome (cancelled call)."""
        self._trial_in_flight = False

    async def execute(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run `operation` under the breaker.

        Raises:
            CircuitBreakerOpenError: the breaker rejected the call; `operation`
                was not invoked.
        """
        self.ensure_allowed()

        try:
            result = await operation(*args, **kwargs)
        except asyncio.CancelledError:
            self.release()
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    # ------------------------------------------------------------------
    # Observation and manual control
    # ------------------------------------------------------------------

    def get_metrics(self) -> dict[str, Any]:
        state = self.get_state()
        return {
            "name": self.name,
            "state": state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "total_attempts": self._total_attempts,
            "last_failure_time": self._last_failure_time,
            "last_success_time": self._last_success_time,
            "state_changes": self._state_changes,
            "time_in_current_state": self._clock() - self._state_changed_at,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }

    def force_state(self, state: CircuitState) -> None:
        """Force a state (manual control and tests). Forcing CLOSED clears failures."""
        self._set_state(CircuitState(state))
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
        if state == CircuitState.CLOSED:
            self._consecutive_failures = 0

    def reset(self) -> None:
        """Return to a pristine CLOSED breaker with zeroed metrics."""
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_in_flight = False
        self._opened_at = None
        self._init_counters()


# ============================================================================
# Registry
# ============================================================================


class CircuitBreakerRegistry:
    """
    Owns one breaker per provider key.

    Constructed explicitly (by the application lifespan or by tests) and
    injected into the generation session; there is no module-level instance.
    """

    def __init__(
        self,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        clock: Callable[[], float] | None = None,
        on_state_change: StateChangeListener | None = None,
    ):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                failure_threshold=self._failure_threshold,
                recovery_timeout=self._recovery_timeout,
                clock=self._clock,
                on_state_change=self._on_state_change,
            )
        return self._breakers[name]

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    @property
    def names(self) -> list[str]:
        return list(self._breakers)

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_metrics() for name, breaker in self._breakers.items()}

    def get_unhealthy_breakers(self) -> list[str]:
        return [name for name, breaker in self._breakers.items() if not breaker.is_healthy()]

    def has_unhealthy_breakers(self) -> bool:
        return bool(self.get_unhealthy_breakers())

    def reset_all(self) -> None:
        """Helper for tests and admin reset."""
        for breaker in self._breakers.values():
            breaker.reset()

    def remove_breaker(self, name: str) -> bool:
        return self._breakers.pop(name, None) is not None
