"""
Possibility Executor

Runs one possibility end to end: breaker admission, the streaming POST to the
provider-fronting endpoint, frame parsing, store updates and callbacks.

STAGE-ST: Streaming Execution
-----------------------------
ST.1: Breaker admission (fail fast when open)
ST.2: Execution request
ST.3: Frame loop (token, probability, possibility_complete, error, [DONE])
ST.4: Outcome recording (breaker + metrics)

Outcomes:
- completed: stream concluded cleanly, breaker success recorded
- failed:    transport/provider/stream error, breaker failure recorded, on_error fired
- rejected:  breaker open, operation not attempted, on_error fired
- cancelled: token cancelled, no breaker outcome, no further updates

Author: System Architect
Date: 2025-12-11
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from possibility_engine.core.config.constants import Stage, StreamEventType
from possibility_engine.core.exceptions import (
    CircuitBreakerOpenError,
    PossibilityEngineError,
    StreamingError,
    classify_error,
    error_from_status,
)
from possibility_engine.core.logging.logger import get_logger, log_stage
from possibility_engine.core.resilience.circuit_breaker import CircuitBreakerRegistry
from possibility_engine.generation.metadata_builder import PossibilityMetadataBuilder
from possibility_engine.generation.models import PossibilityMetadata
from possibility_engine.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from possibility_engine.streaming.cancellation import CancellationToken
from possibility_engine.streaming.event_parser import StreamEventParser
from possibility_engine.streaming.models import (
    ChatMessage,
    ExecutionOptions,
    ExecutionRequest,
    ParsedFrame,
    PossibilityState,
)
from possibility_engine.streaming.possibility_store import PossibilityStore

logger = get_logger(__name__)

UpdateCallback = Callable[[PossibilityState], None]
ErrorCallback = Callable[[str, PossibilityEngineError], None]


class ExecutionOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PossibilityResult:
    possibility_id: str
    outcome: ExecutionOutcome
    error: PossibilityEngineError | None = None

    @property
    def settled(self) -> bool:
        """Completed, failed and rejected possibilities all count as settled."""
        return self.outcome != ExecutionOutcome.CANCELLED


class _StreamState:
    __slots__ = ("concluded", "completed", "error")

    def __init__(self):
        self.concluded = False
        self.completed = False
        self.error: PossibilityEngineError | None = None


class PossibilityExecutor:
    """
    Executes possibilities against `POST {base_url}/possibility/{id}`.

    Args:
        client: Shared httpx.AsyncClient (connection reuse across possibilities)
        breakers: Per-provider circuit breaker registry
        store: Possibility map updated by the frame loop
        base_url: Prefix of the execution endpoint (e.g. "http://engine/api/v1")
        metrics: Metrics sink
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        breakers: CircuitBreakerRegistry,
        store: PossibilityStore,
        base_url: str = "",
        metrics: MetricsCollector | None = None,
    ):
        self.client = client
        self.breakers = breakers
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.metrics = metrics or get_metrics_collector()

    def execution_url(self, possibility_id: str) -> str:
        return f"{self.base_url}/possibility/{quote(possibility_id, safe='')}"

    async def execute(
        self,
        metadata: PossibilityMetadata,
        messages: Sequence[ChatMessage],
        token: CancellationToken,
        on_update: UpdateCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> PossibilityResult:
        possibility_id = metadata.id
        provider = metadata.provider

        if token.is_cancelled:
            return self._finish(metadata, ExecutionOutcome.CANCELLED)

        # STAGE-ST.1: Breaker admission
        breaker = self.breakers.get_breaker(provider)
        if not breaker.should_allow_request():
            error = CircuitBreakerOpenError(
                f"Circuit open for {provider}",
                breaker_name=provider,
                retry_after=breaker.retry_after(),
                details={"possibility_id": possibility_id},
            )
            self._report_error(possibility_id, error, on_error)
            return self._finish(metadata, ExecutionOutcome.REJECTED, error)

        # STAGE-ST.2: Execution request
        body = ExecutionRequest(
            messages=list(messages),
            permutation=PossibilityMetadataBuilder.metadata_to_permutation(metadata),
            options=ExecutionOptions(max_tokens=metadata.estimated_tokens),
        ).to_wire()

        log_stage(logger, "ST.2", "Executing possibility", level="debug",
                  possibility_id=possibility_id, provider=provider, model=metadata.model)

        stream = _StreamState()
        try:
            async with self.client.stream(
                "POST", self.execution_url(possibility_id), json=body
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise error_from_status(
                        response.status_code,
                        provider=provider,
                        reason=response.reason_phrase,
                        headers=response.headers,
                        possibility_id=possibility_id,
                    )
                cancelled = await self._consume(
                    response, metadata, token, stream, on_update, on_error
                )
        except asyncio.CancelledError:
            breaker.release()
            raise
        except Exception as exc:
            if token.is_cancelled:
                breaker.release()
                return self._finish(metadata, ExecutionOutcome.CANCELLED)
            error = classify_error(exc, possibility_id=possibility_id, provider=provider)
            breaker.record_failure()
            self._report_error(possibility_id, error, on_error)
            return self._finish(metadata, ExecutionOutcome.FAILED, error)

        # STAGE-ST.4: Outcome recording
        if cancelled:
            breaker.release()
            return self._finish(metadata, ExecutionOutcome.CANCELLED)

        if stream.error is None and not stream.completed:
            stream.error = StreamingError(
                "Stream ended before completion",
                details={"possibility_id": possibility_id, "provider": provider},
            )
            self._report_error(possibility_id, stream.error, on_error)

        if stream.error is not None:
            breaker.record_failure()
            return self._finish(metadata, ExecutionOutcome.FAILED, stream.error)

        breaker.record_success()
        return self._finish(metadata, ExecutionOutcome.COMPLETED)

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------

    async def _consume(
        self,
        response: httpx.Response,
        metadata: PossibilityMetadata,
        token: CancellationToken,
        stream: _StreamState,
        on_update: UpdateCallback | None,
        on_error: ErrorCallback | None,
    ) -> bool:
        """
        STAGE-ST.3: Read chunks until [DONE], end of body or cancellation.

        Returns True when the token was cancelled.
        """
        parser = StreamEventParser(
            stream_id=metadata.id,
            on_parse_error=lambda reason: self.metrics.record_parse_error(metadata.provider),
        )
        chunks = response.aiter_text().__aiter__()
        cancel_waiter = asyncio.ensure_future(token.wait())
        chunk_task: asyncio.Future | None = None

        try:
            while not stream.concluded:
                chunk_task = asyncio.ensure_future(chunks.__anext__())
                done, _ = await asyncio.wait(
                    {chunk_task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter in done:
                    return True
                try:
                    chunk = chunk_task.result()
                except StopAsyncIteration:
                    break
                finally:
                    chunk_task = None

                for frame in parser.feed(chunk):
                    if token.is_cancelled:
                        return True
                    self._apply(frame, metadata, stream, on_update, on_error)
                    if stream.concluded:
                        break

            if not stream.concluded:
                for frame in parser.flush():
                    if token.is_cancelled:
                        return True
                    self._apply(frame, metadata, stream, on_update, on_error)
        finally:
            cancel_waiter.cancel()
            if chunk_task is not None and not chunk_task.done():
                chunk_task.cancel()
                await asyncio.gather(chunk_task, return_exceptions=True)

        return token.is_cancelled

    def _apply(
        self,
        frame: ParsedFrame,
        metadata: PossibilityMetadata,
        stream: _StreamState,
        on_update: UpdateCallback | None,
        on_error: ErrorCallback | None,
    ) -> None:
        possibility_id = metadata.id

        if frame.is_done:
            stream.concluded = True
            stream.completed = True
            self._notify(on_update, self.store.mark_complete(possibility_id))
            return

        event = frame.event
        data: dict[str, Any] = event.data

        if event.type == StreamEventType.TOKEN:
            token_text = data.get("token")
            if token_text:
                self._notify(on_update, self.store.append_token(possibility_id, str(token_text)))
        elif event.type == StreamEventType.PROBABILITY:
            probability = data.get("probability")
            self._notify(
                on_update,
                self.store.set_probability(
                    possibility_id,
                    float(probability) if isinstance(probability, (int, float)) else None,
                    data.get("logprobs"),
                ),
            )
        elif event.type in (StreamEventType.POSSIBILITY_COMPLETE, StreamEventType.COMPLETE):
            stream.completed = True
            self._notify(on_update, self.store.mark_complete(possibility_id))
        elif event.type == StreamEventType.ERROR:
            stream.error = StreamingError(
                str(data.get("message") or "Unknown error"),
                details={"possibility_id": possibility_id, "provider": metadata.provider},
            )
            self._report_error(possibility_id, stream.error, on_error)
        else:
            log_stage(logger, "ST.3", "Ignoring stream event", level="debug",
                      possibility_id=possibility_id, event_type=event.type.value)

    # ------------------------------------------------------------------
    # Callbacks and bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _notify(on_update: UpdateCallback | None, state: PossibilityState | None) -> None:
        if on_update is None or state is None:
            return
        try:
            on_update(state)
        except Exception as e:
            logger.error("Possibility update callback failed", possibility_id=state.id,
                         error=str(e), exc_info=True)

    def _report_error(
        self,
        possibility_id: str,
        error: PossibilityEngineError,
        on_error: ErrorCallback | None,
    ) -> None:
        self.store.mark_error(possibility_id, error.message)
        log_stage(logger, Stage.STREAMING, "Possibility failed", level="warning",
                  possibility_id=possibility_id, error_type=error.error_type.value,
                  error=error.message)
        if on_error is None:
            return
        try:
            on_error(possibility_id, error)
        except Exception as e:
            logger.error("Possibility error callback failed", possibility_id=possibility_id,
                         error=str(e), exc_info=True)

    def _finish(
        self,
        metadata: PossibilityMetadata,
        outcome: ExecutionOutcome,
        error: PossibilityEngineError | None = None,
    ) -> PossibilityResult:
        self.metrics.record_possibility_outcome(metadata.provider, outcome.value)
        return PossibilityResult(metadata.id, outcome, error)
