"""
Unit Tests for PossibilityExecutor

Runs single possibilities against a fake execution endpoint (httpx
MockTransport) and checks store updates, callbacks, breaker recording and
the outcome of each path.
"""

import asyncio
from unittest.mock import MagicMock

import httpx
import orjson
import pytest

from possibility_engine.core.config.constants import CircuitState
from possibility_engine.core.exceptions import (
    CircuitBreakerOpenError,
    ProviderError,
    RateLimitError,
    StreamingError,
)
from possibility_engine.generation.metadata_builder import PossibilityMetadataBuilder
from possibility_engine.streaming.cancellation import CancellationToken
from possibility_engine.streaming.executor import ExecutionOutcome, PossibilityExecutor
from possibility_engine.streaming.models import ChatMessage
from possibility_engine.streaming.possibility_store import PossibilityStore

MESSAGES = [ChatMessage(role="user", content="Tell me something")]


def _response(*frames: str, status_code: int = 200, headers=None) -> httpx.Response:
    return httpx.Response(status_code, content="".join(frames).encode(), headers=headers)


def _frame(event_type: str, **data) -> str:
    return "data: " + orjson.dumps({"type": event_type, "data": data}).decode() + "\n\n"


DONE = "data: [DONE]\n\n"


@pytest.fixture
def metadata(small_catalog, test_settings, user_settings):
    builder = PossibilityMetadataBuilder(catalog=small_catalog, settings=test_settings)
    return builder.build_prioritized_metadata(user_settings)[0]


@pytest.fixture
def store(metadata):
    store = PossibilityStore()
    store.initialize([metadata])
    return store


@pytest.fixture
def make_executor(breakers, store, mock_metrics):
    def _make(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return PossibilityExecutor(client, breakers, store, base_url="http://engine/api/v1/",
                                   metrics=mock_metrics)

    return _make


@pytest.mark.unit
class TestSuccessfulExecution:
    @pytest.mark.asyncio
    async def test_stream_accumulates_and_completes(self, make_executor, metadata, store,
                                                    breakers):
        seen = []

        def handler(request):
            seen.append(request)
            return _response(
                _frame("possibility_start", id=metadata.id),
                _frame("token", id=metadata.id, token="Hello"),
                _frame("token", id=metadata.id, token=" world"),
                _frame("probability", id=metadata.id, probability=0.8, logprobs={"tokens": []}),
                _frame("possibility_complete", id=metadata.id),
                DONE,
            )

        updates = MagicMock()
        result = await make_executor(handler).execute(
            metadata, MESSAGES, CancellationToken(metadata.id), on_update=updates
        )

        assert result.outcome == ExecutionOutcome.COMPLETED
        assert result.settled
        state = store.get(metadata.id)
        assert state.content == "Hello world"
        assert state.is_complete
        assert state.probability == 0.8
        assert updates.call_count == 4
        assert breakers.get_breaker(metadata.provider).get_metrics()["success_count"] == 1

    @pytest.mark.asyncio
    async def test_request_shape(self, make_executor, metadata):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = orjson.loads(request.content)
            return _response(_frame("token", id=metadata.id, token="x"), DONE)

        await make_executor(handler).execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert captured["path"] == f"/api/v1/possibility/{metadata.id}"
        body = captured["body"]
        assert body["messages"] == [{"role": "user", "content": "Tell me something"}]
        assert body["permutation"]["id"] == metadata.id
        assert body["permutation"]["systemInstruction"]["id"] == "default"
        assert body["options"]["maxTokens"] == metadata.estimated_tokens

    @pytest.mark.asyncio
    async def test_done_sentinel_alone_completes(self, make_executor, metadata, store):
        result = await make_executor(
            lambda request: _response(_frame("token", id=metadata.id, token="Hi"), DONE)
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert result.outcome == ExecutionOutcome.COMPLETED
        assert store.get(metadata.id).is_complete

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, make_executor, metadata, store,
                                               mock_metrics):
        result = await make_executor(
            lambda request: _response(
                "data: {broken\n", ": keep-alive\n",
                _frame("token", id=metadata.id, token="ok"), DONE,
            )
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert result.outcome == ExecutionOutcome.COMPLETED
        assert store.get(metadata.id).content == "ok"
        assert mock_metrics.record_parse_error.call_count == 2

    @pytest.mark.asyncio
    async def test_update_callback_failure_is_contained(self, make_executor, metadata):
        result = await make_executor(
            lambda request: _response(_frame("token", id=metadata.id, token="x"), DONE)
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id),
                  on_update=MagicMock(side_effect=RuntimeError("ui bug")))

        assert result.outcome == ExecutionOutcome.COMPLETED


@pytest.mark.unit
class TestFailedExecution:
    @pytest.mark.asyncio
    async def test_http_error_status(self, make_executor, metadata, store, breakers):
        on_error = MagicMock()
        result = await make_executor(lambda request: httpx.Response(500)).execute(
            metadata, MESSAGES, CancellationToken(metadata.id), on_error=on_error
        )

        assert result.outcome == ExecutionOutcome.FAILED
        assert result.settled
        assert isinstance(result.error, ProviderError)
        assert result.error.status_code == 500
        on_error.assert_called_once_with(metadata.id, result.error)
        assert store.get(metadata.id).error == result.error.message
        assert breakers.get_breaker(metadata.provider).get_metrics()["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_rate_limited(self, make_executor, metadata):
        result = await make_executor(
            lambda request: httpx.Response(429, headers={"Retry-After": "3"})
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert isinstance(result.error, RateLimitError)
        assert result.error.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_error_event(self, make_executor, metadata, store):
        on_error = MagicMock()
        result = await make_executor(
            lambda request: _response(
                _frame("token", id=metadata.id, token="par"),
                _frame("error", id=metadata.id, message="model overloaded"),
                DONE,
            )
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id), on_error=on_error)

        assert result.outcome == ExecutionOutcome.FAILED
        assert isinstance(result.error, StreamingError)
        assert result.error.message == "model overloaded"
        assert store.get(metadata.id).content == "par"
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_ending_early(self, make_executor, metadata):
        result = await make_executor(
            lambda request: _response(_frame("token", id=metadata.id, token="cut"))
        ).execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert result.outcome == ExecutionOutcome.FAILED
        assert "before completion" in result.error.message

    @pytest.mark.asyncio
    async def test_transport_error(self, make_executor, metadata):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_executor(handler).execute(
            metadata, MESSAGES, CancellationToken(metadata.id)
        )

        assert result.outcome == ExecutionOutcome.FAILED
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_without_request(self, make_executor, metadata,
                                                        breakers):
        breakers.get_breaker(metadata.provider).force_state(CircuitState.OPEN)
        handler = MagicMock()
        on_error = MagicMock()

        result = await make_executor(handler).execute(
            metadata, MESSAGES, CancellationToken(metadata.id), on_error=on_error
        )

        assert result.outcome == ExecutionOutcome.REJECTED
        assert result.settled
        assert isinstance(result.error, CircuitBreakerOpenError)
        handler.assert_not_called()
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_repeated_failures_open_breaker(self, make_executor, metadata, breakers):
        executor = make_executor(lambda request: httpx.Response(503))
        for _ in range(3):
            await executor.execute(metadata, MESSAGES, CancellationToken(metadata.id))

        assert breakers.get_breaker(metadata.provider).get_state() == CircuitState.OPEN
        result = await executor.execute(metadata, MESSAGES, CancellationToken(metadata.id))
        assert result.outcome == ExecutionOutcome.REJECTED


@pytest.mark.unit
class TestCancelledExecution:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_executor, metadata, mock_metrics):
        handler = MagicMock()
        token = CancellationToken(metadata.id)
        token.cancel()

        result = await make_executor(handler).execute(metadata, MESSAGES, token)

        assert result.outcome == ExecutionOutcome.CANCELLED
        assert not result.settled
        handler.assert_not_called()
        mock_metrics.record_possibility_outcome.assert_called_once_with(
            metadata.provider, "cancelled"
        )

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_stops_updates(self, make_executor, metadata, store,
                                                   breakers):
        release = asyncio.Event()
        first_token = asyncio.Event()

        async def body():
            yield _frame("token", id=metadata.id, token="Hel").encode()
            await release.wait()
            yield _frame("token", id=metadata.id, token="lo").encode()
            yield DONE.encode()

        updates = []

        def on_update(state):
            updates.append(state.content)
            first_token.set()

        token = CancellationToken(metadata.id)
        executor = make_executor(lambda request: httpx.Response(200, content=body()))
        running = asyncio.create_task(
            executor.execute(metadata, MESSAGES, token, on_update=on_update)
        )

        await asyncio.wait_for(first_token.wait(), timeout=1)
        token.cancel()
        result = await asyncio.wait_for(running, timeout=1)

        assert result.outcome == ExecutionOutcome.CANCELLED
        assert updates == ["Hel"]
        assert not store.get(metadata.id).is_complete
        metrics = breakers.get_breaker(metadata.provider).get_metrics()
        assert metrics["failure_count"] == 0
        assert metrics["success_count"] == 0
