"""
Possibility Routes
==================

Two endpoints share one event vocabulary (`data: {"type", "data"}` frames
terminated by `data: [DONE]`):

1. POST /possibility/{id}
   The provider-fronting execution endpoint. Streams one possibility:
   possibility_start, token*, probability, possibility_complete (or error).
   With `options.stream = false` the events are collected into one JSON
   possibility instead.

2. POST /possibilities/stream
   The aggregate endpoint. Runs a whole GenerationSession and multiplexes
   every possibility's events into one stream, followed by `done`.

Routes handle HTTP only; the generation logic lives in GenerationSession.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse

from possibility_engine.application.api.dependencies import (
    BreakersDep,
    CatalogDep,
    ExecutionBaseUrlDep,
    ExecutionClientDep,
    MetricsDep,
    ProviderDep,
    SettingsDep,
)
from possibility_engine.application.api.models import (
    GenerateRequestModel,
    PossibilityRequestModel,
)
from possibility_engine.application.services.generation_session import (
    GenerationResult,
    create_generation_session,
)
from possibility_engine.core.config.constants import (
    HEADER_REQUEST_ID,
    SSE_MEDIA_TYPE,
    StreamEventType,
)
from possibility_engine.core.exceptions import PossibilityEngineError, classify_error
from possibility_engine.core.logging.logger import get_logger
from possibility_engine.streaming.models import PossibilityState, StreamEvent

router = APIRouter(tags=["Possibilities"])
logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _request_id(request: Request) -> str:
    return request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())


# ============================================================================
# SINGLE POSSIBILITY
# ============================================================================


@router.post(
    "/possibility/{possibility_id}",
    responses={
        200: {"description": "Event stream of one possibility",
              "content": {"text/event-stream": {}}},
        204: {"description": "Non-streaming execution produced no content"},
        400: {"description": "Permutation id does not match the path"},
    },
)
async def execute_possibility(
    possibility_id: str,
    request: Request,
    body: PossibilityRequestModel,
    provider: ProviderDep,
):
    """
    Execute one permutation and stream its events.

    The permutation id in the body must equal the path id; a mismatch is a
    client error (400) and nothing is executed.
    """
    request_id = _request_id(request)
    if body.permutation.id != possibility_id:
        logger.warning("Permutation id mismatch", stage="API.1", path_id=possibility_id,
                       body_id=body.permutation.id, request_id=request_id)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Permutation ID mismatch"},
            headers={HEADER_REQUEST_ID: request_id},
        )

    events = provider.stream_possibility(
        body.messages, body.permutation, body.options.max_tokens
    )

    if not body.options.stream:
        return await _collect_possibility(possibility_id, events, request_id)

    async def frames() -> AsyncGenerator[str, None]:
        try:
            async for event in events:
                yield event.format()
        except Exception as e:
            error = classify_error(e, possibility_id=possibility_id)
            logger.error("Possibility stream failed", stage="API.2",
                         possibility_id=possibility_id, error=error.message)
            yield StreamEvent(
                type=StreamEventType.ERROR,
                data={"id": possibility_id, "message": error.message},
            ).format()
        yield StreamEvent.done_frame()

    return StreamingResponse(
        frames(),
        media_type=SSE_MEDIA_TYPE,
        headers={**SSE_HEADERS, HEADER_REQUEST_ID: request_id},
    )


async def _collect_possibility(
    possibility_id: str, events: AsyncGenerator[StreamEvent, None], request_id: str
) -> Response:
    possibility: dict[str, Any] = {
        "id": possibility_id,
        "content": "",
        "probability": None,
        "logprobs": None,
    }
    async for event in events:
        if event.type == StreamEventType.POSSIBILITY_START:
            possibility.update(
                provider=event.data.get("provider"),
                model=event.data.get("model"),
                temperature=event.data.get("temperature"),
                systemInstruction=event.data.get("systemInstruction"),
            )
        elif event.type == StreamEventType.TOKEN:
            possibility["content"] += str(event.data.get("token", ""))
        elif event.type == StreamEventType.PROBABILITY:
            possibility["probability"] = event.data.get("probability")
            possibility["logprobs"] = event.data.get("logprobs")
        elif event.type == StreamEventType.ERROR:
            return JSONResponse(
                status_code=status.HTTP_502_BAD_GATEWAY,
                content={"error": event.data.get("message", "Unknown error")},
                headers={HEADER_REQUEST_ID: request_id},
            )

    if not possibility["content"].strip():
        return Response(status_code=status.HTTP_204_NO_CONTENT,
                        headers={HEADER_REQUEST_ID: request_id})
    return JSONResponse(content={"possibility": possibility},
                        headers={HEADER_REQUEST_ID: request_id})


# ============================================================================
# AGGREGATE STREAM
# ============================================================================


class _EventRelay:
    """
    Turns session callbacks (whole PossibilityState snapshots) into the
    incremental event vocabulary, one queue per aggregate request.
    """

    def __init__(self):
        self.queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._started: set[str] = set()
        self._content_length: dict[str, int] = {}
        self._probability: dict[str, float | None] = {}
        self._completed: set[str] = set()

    def _start(self, state: PossibilityState) -> None:
        if state.id in self._started:
            return
        self._started.add(state.id)
        metadata = state.metadata
        self.queue.put_nowait(StreamEvent(
            type=StreamEventType.POSSIBILITY_START,
            data={
                "id": state.id,
                "provider": metadata.provider,
                "model": metadata.model,
                "temperature": metadata.temperature,
                "systemInstruction": (
                    metadata.system_instruction.name if metadata.system_instruction else None
                ),
                "priority": metadata.priority.value,
            },
        ))

    def on_update(self, state: PossibilityState) -> None:
        self._start(state)
        seen = self._content_length.get(state.id, 0)
        if len(state.content) > seen:
            self._content_length[state.id] = len(state.content)
            self.queue.put_nowait(StreamEvent(
                type=StreamEventType.TOKEN,
                data={"id": state.id, "token": state.content[seen:]},
            ))
        if state.probability is not None and self._probability.get(state.id) != state.probability:
            self._probability[state.id] = state.probability
            self.queue.put_nowait(StreamEvent(
                type=StreamEventType.PROBABILITY,
                data={"id": state.id, "probability": state.probability,
                      "logprobs": state.logprobs},
            ))
        if state.is_complete and state.id not in self._completed:
            self._completed.add(state.id)
            self.queue.put_nowait(StreamEvent(
                type=StreamEventType.POSSIBILITY_COMPLETE, data={"id": state.id}
            ))

    def on_error(self, possibility_id: str, error: PossibilityEngineError) -> None:
        self.queue.put_nowait(StreamEvent(
            type=StreamEventType.ERROR,
            data={"id": possibility_id, "message": error.message,
                  "error_type": error.error_type.value},
        ))

    def finish(self, result: GenerationResult | None, error: PossibilityEngineError | None) -> None:
        if error is not None:
            self.queue.put_nowait(StreamEvent(
                type=StreamEventType.ERROR,
                data={"message": error.message, "error_type": error.error_type.value},
            ))
        if result is not None:
            self.queue.put_nowait(StreamEvent(
                type=StreamEventType.DONE,
                data={"requestId": result.request_id, "state": result.state.value,
                      "settled": result.settled_count, "total": len(result.possibilities)},
            ))
        self.queue.put_nowait(None)


@router.post(
    "/possibilities/stream",
    responses={
        200: {"description": "Multiplexed event stream of every possibility",
              "content": {"text/event-stream": {}}},
        422: {"description": "Validation error - invalid request format"},
    },
)
async def stream_possibilities(
    request: Request,
    body: GenerateRequestModel,
    settings: SettingsDep,
    breakers: BreakersDep,
    catalog: CatalogDep,
    metrics: MetricsDep,
    client: ExecutionClientDep,
    base_url: ExecutionBaseUrlDep,
):
    """
    Generate every possibility for the request and stream their events.

    The client disconnecting cancels the whole generation.
    """
    request_id = _request_id(request)
    session = create_generation_session(
        settings,
        client=client,
        base_url=base_url,
        breakers=breakers,
        catalog=catalog,
        metrics=metrics,
    )
    relay = _EventRelay()

    logger.info("Aggregate stream requested", stage="API.3", request_id=request_id,
                messages=len(body.messages))

    async def run() -> None:
        result: GenerationResult | None = None
        error: PossibilityEngineError | None = None
        try:
            result = await session.generate(
                body.messages,
                body.settings,
                body.options,
                on_update=relay.on_update,
                on_error=relay.on_error,
                request_id=request_id,
            )
            error = result.error
        except PossibilityEngineError as e:
            error = e
        except Exception as e:
            error = classify_error(e, request_id=request_id)
            logger.error("Aggregate generation failed", stage="API.3", request_id=request_id,
                         error=error.message, exc_info=True)
        finally:
            relay.finish(result, error)

    async def frames() -> AsyncGenerator[str, None]:
        task = asyncio.create_task(run(), name=f"generation-{request_id}")
        try:
            while True:
                event = await relay.queue.get()
                if event is None:
                    break
                yield event.format()
            yield StreamEvent.done_frame()
        finally:
            if not task.done():
                session.cancel("client_disconnected")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    return StreamingResponse(
        frames(),
        media_type=SSE_MEDIA_TYPE,
        headers={**SSE_HEADERS, HEADER_REQUEST_ID: request_id},
    )
