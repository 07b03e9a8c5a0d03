"""
Generation Session
==================

Coordinates one generation request end to end:

    messages + user settings
        → PossibilityMetadataBuilder (prioritized metadata)
        → PriorityConnectionPool (one task per metadata entry)
        → PossibilityExecutor (breaker-guarded stream per possibility)
        → PossibilityStore (accumulating possibility map)
        → GenerationStateMachine (coarse lifecycle events)

STAGE-GS: Generation Session
----------------------------
GS.1: Validation (fails fast, nothing scheduled)
GS.2: Lifecycle start (START_GENERATION → GENERATION_INITIALIZED)
GS.3: Pre-flight breaker check, retried while the lifecycle allows it
GS.4: Submission (priority order, optional stagger)
GS.5: Settle (POSSIBILITY_COMPLETED per possibility, ALL_COMPLETED)
GS.6: Cancellation

RETRY OWNERSHIP:
----------------
The state machine only decides whether a retry is *legal*. This session owns
the retry loop: a retryable request-level error is reported with
ERROR_OCCURRED, and if the machine holds (instead of moving to failed) the
session waits with tenacity's exponential jitter, or the backoff the error
suggests, then sends RETRY_GENERATION and tries again.

Only request-level failures are retried. A possibility that fails in
isolation is reported through `on_error` and still counts as settled.

Author: System Architect
Date: 2025-12-12
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, wait_exponential_jitter

from possibility_engine.core.config.constants import IN_PROCESS_BASE_URL, CircuitState, Stage
from possibility_engine.core.config.settings import Settings, get_settings
from possibility_engine.core.exceptions import (
    AllProvidersUnavailableError,
    PossibilityEngineError,
    TaskAbortedError,
    ValidationError,
    classify_error,
    is_retryable_error,
)
from possibility_engine.core.logging.logger import get_logger, get_request_id, log_stage
from possibility_engine.core.resilience.circuit_breaker import CircuitBreakerRegistry
from possibility_engine.core.resilience.connection_pool import PoolTask, PriorityConnectionPool
from possibility_engine.generation.metadata_builder import PossibilityMetadataBuilder
from possibility_engine.generation.model_catalog import ModelCatalog, default_model_catalog
from possibility_engine.generation.models import (
    GenerationOptions,
    PossibilityMetadata,
    UserSettings,
)
from possibility_engine.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from possibility_engine.state import (
    AllCompleted,
    CancelGeneration,
    ErrorOccurred,
    GenerationInitialized,
    GenerationState,
    GenerationStateMachine,
    MachineStatus,
    PossibilityCompleted,
    Reset,
    RetryGeneration,
    StartGeneration,
    StreamingStarted,
    TokenReceived,
)
from possibility_engine.state.types import ACTIVE_STATES
from possibility_engine.streaming.cancellation import CancellationRegistry
from possibility_engine.streaming.executor import (
    ErrorCallback,
    ExecutionOutcome,
    PossibilityExecutor,
    PossibilityResult,
    UpdateCallback,
)
from possibility_engine.streaming.models import ChatMessage, PossibilityState
from possibility_engine.streaming.possibility_store import PossibilityStore

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


# ============================================================================
# Result
# ============================================================================


@dataclass
class GenerationResult:
    """Outcome of one `generate()` / `retry()` call."""

    request_id: str | None
    state: GenerationState
    possibilities: list[PossibilityState] = field(default_factory=list)
    results: list[PossibilityResult] = field(default_factory=list)
    cancelled_possibilities: list[str] = field(default_factory=list)
    error: PossibilityEngineError | None = None

    @property
    def settled_count(self) -> int:
        """Completed, failed and rejected possibilities, plus ones cancelled one by one."""
        cancelled = set(self.cancelled_possibilities)
        return sum(
            1 for result in self.results
            if result.settled or result.possibility_id in cancelled
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "state": self.state.value,
            "possibilities": [state.to_dict() for state in self.possibilities],
            "outcomes": {r.possibility_id: r.outcome.value for r in self.results},
            "cancelled_possibilities": list(self.cancelled_possibilities),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class _Request:
    request_id: str
    messages: list[ChatMessage]
    metadata: list[PossibilityMetadata]
    on_update: UpdateCallback | None
    on_error: ErrorCallback | None


# ============================================================================
# Session
# ============================================================================


class GenerationSession:
    """
    Dependency-injected coordinator for one generation at a time.

    Args:
        settings: Application settings
        breakers: Process-wide breaker registry (shared across sessions)
        pool: Bounded priority scheduler owned by this session
        executor: Possibility executor (writes into `store`)
        state_machine: Lifecycle state machine owned by this session
        store: Possibility map shared with `executor`
        metadata_builder: Prioritized metadata source (carries the catalog)
        metrics: Metrics sink
        sleep: Awaitable used for retry backoff and stagger delays
    """

    def __init__(
        self,
        settings: Settings,
        breakers: CircuitBreakerRegistry,
        pool: PriorityConnectionPool,
        executor: PossibilityExecutor,
        state_machine: GenerationStateMachine,
        store: PossibilityStore,
        metadata_builder: PossibilityMetadataBuilder,
        metrics: MetricsCollector | None = None,
        sleep: Sleep | None = None,
        owned_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.breakers = breakers
        self.pool = pool
        self.executor = executor
        self.state_machine = state_machine
        self.store = store
        self.metadata_builder = metadata_builder
        self.metrics = metrics or get_metrics_collector()
        self.cancellations = CancellationRegistry()

        self._sleep = sleep or asyncio.sleep
        self._owned_client = owned_client
        self._backoff = wait_exponential_jitter(
            multiplier=settings.generation.RETRY_BASE_DELAY,
            max=settings.generation.RETRY_MAX_DELAY,
        )
        self._request: _Request | None = None
        self._cancelled = False
        self._seen_content: dict[str, int] = {}
        self._cancelled_ids: set[str] = set()
        self._finished_ids: set[str] = set()
        self._results: list[PossibilityResult] = []

    # ========================================================================
    # Public API
    # ========================================================================

    async def generate(
        self,
        messages: Sequence[ChatMessage | Mapping[str, Any]],
        user_settings: UserSettings | Mapping[str, Any],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        on_update: UpdateCallback | None = None,
        on_error: ErrorCallback | None = None,
        request_id: str | None = None,
    ) -> GenerationResult:
        """
        Run one generation to a terminal state.

        Raises:
            ValidationError: empty/invalid messages or a generation already in progress
        """
        # STAGE-GS.1: Validation
        chat_messages = self._validate_messages(messages)
        if self.state_machine.state in ACTIVE_STATES:
            raise ValidationError(
                "A generation is already in progress",
                details={"state": self.state_machine.state.value},
            )

        metadata = self.metadata_builder.build_prioritized_metadata(user_settings, options)
        request_id = request_id or get_request_id() or f"gen_{uuid.uuid4().hex[:12]}"

        if not metadata:
            log_stage(logger, "GS.1", "No permutations to execute", request_id=request_id)
            return GenerationResult(request_id=request_id, state=self.state_machine.state)

        if self.state_machine.state != GenerationState.IDLE:
            self.state_machine.send(Reset(request_id=request_id))

        self._request = _Request(request_id, chat_messages, metadata, on_update, on_error)

        # STAGE-GS.2: Lifecycle start
        self.metrics.record_generation_started()
        self.state_machine.send(
            StartGeneration(request_id=request_id, possibility_count=len(metadata))
        )
        log_stage(logger, Stage.GENERATION_SESSION, "Generation started",
                  request_id=request_id, possibility_count=len(metadata))

        return await self._run(first_attempt=1)

    async def retry(self) -> GenerationResult:
        """
        Retry the last generation from `failed`, when the lifecycle allows it.

        Raises:
            ValidationError: nothing to retry, or retry not allowed right now
        """
        request = self._request
        status = self.state_machine.get_status()
        if request is None:
            raise ValidationError("No generation to retry")
        if self.state_machine.state != GenerationState.FAILED or not status.can_retry:
            raise ValidationError(
                "Retry is not allowed in the current state",
                request_id=request.request_id,
                details={"state": status.state.value, "can_retry": status.can_retry},
            )

        attempt = self.state_machine.context.retry_attempt + 1
        self.state_machine.send(RetryGeneration(request_id=request.request_id, attempt=attempt))
        log_stage(logger, Stage.RETRY, "Manual retry", request_id=request.request_id,
                  attempt=attempt)
        return await self._run(first_attempt=attempt + 1)

    def cancel(self, reason: str = "user_cancelled") -> bool:
        """
        Cancel the whole generation.

        STAGE-GS.6: Freeze the map, cancel every token, reset the pool, move
        the lifecycle to cancelled and clear the map.

        Returns:
            True when the lifecycle accepted the cancellation
        """
        self._cancelled = True
        self.store.freeze()
        cancelled_streams = self.cancellations.cancel_all(reason)
        self.pool.reset()

        request_id = self._request.request_id if self._request else None
        accepted = self.state_machine.send(CancelGeneration(request_id=request_id, reason=reason))
        self.store.clear()
        self._seen_content.clear()

        log_stage(logger, "GS.6", "Generation cancelled", request_id=request_id,
                  reason=reason, cancelled_streams=cancelled_streams, accepted=accepted)
        return accepted

    def cancel_possibility(
        self, possibility_id: str, reason: str = "possibility_cancelled"
    ) -> bool:
        """
        Cancel one possibility of the running generation.

        An in-flight possibility has its token cancelled; a queued one is
        dropped from the pool. Siblings keep streaming, and the cancelled id
        counts as settled for the lifecycle.

        Returns:
            True when the possibility was still pending or streaming
        """
        request = self._request
        if (
            request is None
            or self._cancelled
            or self.state_machine.state not in ACTIVE_STATES
            or possibility_id in self._finished_ids
            or possibility_id in self._cancelled_ids
            or not any(item.id == possibility_id for item in request.metadata)
        ):
            return False

        self._cancelled_ids.add(possibility_id)
        if self.cancellations.cancel(possibility_id, reason):
            where = "in_flight"
        elif self.pool.abort_task(possibility_id):
            where = "queued"
            self._settle_cancelled(request, possibility_id)
        else:
            # Not submitted yet (stagger); the token is cancelled when it starts
            where = "unsubmitted"

        log_stage(logger, "GS.6", "Possibility cancelled", request_id=request.request_id,
                  possibility_id=possibility_id, reason=reason, where=where)
        return True

    def get_possibilities(self) -> list[PossibilityState]:
        return self.store.snapshot()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.store.get_stats(),
            "state": self.state_machine.state.value,
            "pool": self.pool.get_metrics(),
        }

    def get_status(self) -> MachineStatus:
        return self.state_machine.get_status()

    def clear_possibilities(self) -> None:
        self.store.clear()
        self._seen_content.clear()

    async def aclose(self) -> None:
        """Close the HTTP client when this session created it."""
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _run(self, first_attempt: int) -> GenerationResult:
        request = self._request
        self._cancelled = False
        self._cancelled_ids = set()
        self._finished_ids = set()
        self._results = []
        started = time.perf_counter()

        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            stop=self._lifecycle_stops_retry,
            wait=self._retry_wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self._prepare(request, first_attempt + attempt.retry_state.attempt_number - 1)
            result = await self._stream(request)
        except PossibilityEngineError as e:
            return self._finish_failed(request, e, started)
        except Exception as e:
            error = classify_error(e, request_id=request.request_id)
            self.state_machine.send(
                ErrorOccurred(request_id=request.request_id, error=error, retryable=False)
            )
            return self._finish_failed(request, error, started)

        self.metrics.record_operation_duration(
            "generate", time.perf_counter() - started,
            success=result.state == GenerationState.COMPLETED,
        )
        log_stage(logger, "GS.5", "Generation finished", request_id=request.request_id,
                  state=result.state.value, settled=result.settled_count,
                  total=len(request.metadata))
        return result

    def _prepare(self, request: _Request, attempt_number: int) -> None:
        """
        STAGE-GS.3: One attempt at getting the lifecycle to `generating` with
        at least one provider admitting calls.
        """
        if self._cancelled:
            raise TaskAbortedError("Generation cancelled before streaming started")

        if attempt_number > 1 and self.state_machine.state == GenerationState.GENERATING:
            self.state_machine.send(
                RetryGeneration(request_id=request.request_id,
                                attempt=self.state_machine.context.retry_attempt + 1)
            )
        if self.state_machine.state == GenerationState.INITIALIZING:
            self.state_machine.send(GenerationInitialized(request_id=request.request_id))

        try:
            self._preflight(request)
        except PossibilityEngineError as e:
            self.state_machine.send(
                ErrorOccurred(request_id=request.request_id, error=e, retryable=e.retryable)
            )
            raise

    def _preflight(self, request: _Request) -> None:
        providers = list(dict.fromkeys(item.provider for item in request.metadata))
        breakers = [self.breakers.get_breaker(provider) for provider in providers]
        if all(breaker.get_state() == CircuitState.OPEN for breaker in breakers):
            raise AllProvidersUnavailableError(
                "All targeted providers have open circuit breakers",
                providers=providers,
                retry_after=min(breaker.retry_after() for breaker in breakers),
                request_id=request.request_id,
            )

    async def _stream(self, request: _Request) -> GenerationResult:
        # STAGE-GS.4: Submission
        self.state_machine.send(
            StreamingStarted(
                request_id=request.request_id,
                active_streams=min(len(request.metadata), self.pool.max_concurrency),
            )
        )
        self.store.initialize(request.metadata)
        self._seen_content = {}

        stagger = self.settings.streaming.STREAM_STAGGER_DELAY
        submitted: list[str] = []
        futures: list[asyncio.Future] = []
        for index, item in enumerate(request.metadata):
            if self._cancelled:
                break
            if index and stagger > 0:
                await self._sleep(stagger)
                if self._cancelled:
                    break
            submitted.append(item.id)
            futures.append(
                self.pool.enqueue(
                    PoolTask(
                        id=item.id,
                        priority=item.priority,
                        execute=partial(self._run_possibility, request, item),
                    )
                )
            )

        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        # STAGE-GS.5: Settle
        results: list[PossibilityResult] = []
        for possibility_id, outcome in zip(submitted, outcomes):
            if isinstance(outcome, PossibilityResult):
                results.append(outcome)
            elif isinstance(outcome, TaskAbortedError):
                if possibility_id in self._cancelled_ids:
                    results.append(
                        PossibilityResult(possibility_id, ExecutionOutcome.CANCELLED)
                    )
            else:
                log_stage(logger, "GS.5", "Possibility task raised", level="error",
                          request_id=request.request_id, possibility_id=possibility_id,
                          error=str(outcome), error_type=type(outcome).__name__)
        self._results = results

        if self._cancelled:
            return GenerationResult(
                request_id=request.request_id,
                state=self.state_machine.state,
                possibilities=self.store.snapshot(),
                results=results,
            )

        cancelled_ids = sorted(self._cancelled_ids)
        settled = sum(
            1 for result in results
            if result.settled or result.possibility_id in self._cancelled_ids
        )
        if not self.state_machine.send(
            AllCompleted(request_id=request.request_id, total_completed=settled)
        ):
            error = PossibilityEngineError(
                f"Only {settled} of {len(request.metadata)} possibilities settled",
                request_id=request.request_id,
                details={"settled": settled, "total": len(request.metadata)},
            )
            self.state_machine.send(
                ErrorOccurred(request_id=request.request_id, error=error, retryable=False)
            )
            raise error

        return GenerationResult(
            request_id=request.request_id,
            state=self.state_machine.state,
            possibilities=self.store.snapshot(),
            results=results,
            cancelled_possibilities=cancelled_ids,
        )

    async def _run_possibility(
        self, request: _Request, metadata: PossibilityMetadata
    ) -> PossibilityResult:
        token = self.cancellations.create(metadata.id)
        if metadata.id in self._cancelled_ids:
            token.cancel("possibility_cancelled")
        try:
            result = await self.executor.execute(
                metadata,
                request.messages,
                token,
                on_update=partial(self._handle_update, request),
                on_error=request.on_error,
            )
        finally:
            self.cancellations.release(token)

        if result.settled:
            self._finished_ids.add(metadata.id)
            if not self._cancelled:
                self.state_machine.send(
                    PossibilityCompleted(request_id=request.request_id, possibility_id=metadata.id)
                )
        elif metadata.id in self._cancelled_ids:
            self._settle_cancelled(request, metadata.id)
        return result

    def _settle_cancelled(self, request: _Request, possibility_id: str) -> None:
        self._finished_ids.add(possibility_id)
        if not self._cancelled:
            self.state_machine.send(
                PossibilityCompleted(request_id=request.request_id, possibility_id=possibility_id)
            )

    def _handle_update(self, request: _Request, state: PossibilityState) -> None:
        if self._cancelled:
            return
        seen = self._seen_content.get(state.id, 0)
        if len(state.content) > seen:
            self._seen_content[state.id] = len(state.content)
            self.state_machine.send(
                TokenReceived(request_id=request.request_id, possibility_id=state.id,
                              token=state.content[seen:])
            )
        if request.on_update is not None:
            request.on_update(state)

    def _finish_failed(
        self, request: _Request, error: PossibilityEngineError, started: float
    ) -> GenerationResult:
        self.metrics.record_operation_duration(
            "generate", time.perf_counter() - started, success=False
        )
        if self._cancelled:
            log_stage(logger, "GS.6", "Generation stopped by cancellation",
                      request_id=request.request_id)
            return GenerationResult(request_id=request.request_id, state=self.state_machine.state)

        self.metrics.record_generation_failed(error.error_type.value)
        log_stage(logger, Stage.GENERATION_SESSION, "Generation failed", level="error",
                  request_id=request.request_id, error_type=error.error_type.value,
                  error=error.message, state=self.state_machine.state.value)
        return GenerationResult(
            request_id=request.request_id,
            state=self.state_machine.state,
            possibilities=self.store.snapshot(),
            results=self._results,
            cancelled_possibilities=sorted(self._cancelled_ids),
            error=error,
        )

    # ========================================================================
    # Retry policy (tenacity hooks)
    # ========================================================================

    def _lifecycle_stops_retry(self, retry_state: RetryCallState) -> bool:
        """Keep retrying only while the machine held in `generating`."""
        return self.state_machine.state != GenerationState.GENERATING

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(float(retry_after), self.settings.generation.RETRY_MAX_DELAY)
        return self._backoff(retry_state)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        log_stage(
            logger,
            Stage.RETRY,
            "Retrying generation",
            level="warning",
            attempt=retry_state.attempt_number,
            wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0,
            error=str(error),
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _validate_messages(
        messages: Sequence[ChatMessage | Mapping[str, Any]] | None,
    ) -> list[ChatMessage]:
        if not messages:
            raise ValidationError("At least one message is required")
        try:
            return [
                message if isinstance(message, ChatMessage) else ChatMessage.model_validate(message)
                for message in messages
            ]
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid message", details={"errors": e.errors(include_url=False)}
            ) from e


# ============================================================================
# Factory
# ============================================================================


def create_generation_session(
    settings: Settings | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    base_url: str | None = None,
    breakers: CircuitBreakerRegistry | None = None,
    catalog: ModelCatalog | None = None,
    metrics: MetricsCollector | None = None,
    sleep: Sleep | None = None,
) -> GenerationSession:
    """
    Wire a session with default collaborators.

    Without `client`, requests go to EXECUTION_BASE_URL, or to an in-process
    application over ASGI when that is unset.
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics_collector()
    catalog = catalog or default_model_catalog()
    owned_client = None

    if client is None:
        if settings.streaming.EXECUTION_BASE_URL:
            client = httpx.AsyncClient(timeout=settings.streaming.EXECUTION_TIMEOUT)
            base_url = base_url or settings.streaming.EXECUTION_BASE_URL
        else:
            from possibility_engine.application.app import create_app

            client = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=create_app(settings)),
                base_url=IN_PROCESS_BASE_URL,
                timeout=settings.streaming.EXECUTION_TIMEOUT,
            )
            base_url = base_url or f"{IN_PROCESS_BASE_URL}{settings.app.API_BASE_PATH}"
        owned_client = client

    if breakers is None:
        breakers = CircuitBreakerRegistry(
            failure_threshold=settings.circuit_breaker.CB_FAILURE_THRESHOLD,
            recovery_timeout=settings.circuit_breaker.CB_RECOVERY_TIMEOUT,
            on_state_change=metrics.record_breaker_state,
        )

    store = PossibilityStore()
    return GenerationSession(
        settings=settings,
        breakers=breakers,
        pool=PriorityConnectionPool(
            max_concurrency=settings.pool.POOL_MAX_CONCURRENCY,
            on_metrics=metrics.record_pool_metrics,
        ),
        executor=PossibilityExecutor(
            client, breakers, store, base_url=base_url or "", metrics=metrics
        ),
        state_machine=GenerationStateMachine(
            max_retries=settings.generation.GENERATION_MAX_RETRIES
        ),
        store=store,
        metadata_builder=PossibilityMetadataBuilder(catalog=catalog, settings=settings),
        metrics=metrics,
        sleep=sleep,
        owned_client=owned_client,
    )
