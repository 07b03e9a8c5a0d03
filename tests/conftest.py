"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import orjson
import pytest

from possibility_engine.application.services.generation_session import (
    create_generation_session,
)
from possibility_engine.core.config.constants import Priority, StreamEventType
from possibility_engine.core.config.settings import Settings
from possibility_engine.core.resilience.circuit_breaker import CircuitBreakerRegistry
from possibility_engine.generation.model_catalog import InMemoryModelCatalog, ModelInfo
from possibility_engine.generation.models import UserSettings
from possibility_engine.infrastructure.monitoring.metrics_collector import MetricsCollector
from possibility_engine.streaming.models import StreamEvent

EXECUTION_BASE_URL = "http://engine/api/v1"


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Real settings with test-friendly values.

    Retries never wait and at most two possibilities run at once.
    """
    return Settings(
        _env_file=None,
        POOL_MAX_CONCURRENCY=2,
        CB_FAILURE_THRESHOLD=3,
        CB_RECOVERY_TIMEOUT=30.0,
        GENERATION_MAX_RETRIES=3,
        RETRY_BASE_DELAY=0.0,
        RETRY_MAX_DELAY=0.0,
        STREAM_STAGGER_DELAY=0.0,
        LOG_LEVEL="WARNING",
    )


class FakeClock:
    """Manually advanced time source for breakers and the state machine."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_metrics():
    """Metrics sink that records calls instead of touching the Prometheus registry."""
    return MagicMock(spec=MetricsCollector)


@pytest.fixture
def breakers(test_settings, clock):
    return CircuitBreakerRegistry(
        failure_threshold=test_settings.CB_FAILURE_THRESHOLD,
        recovery_timeout=test_settings.CB_RECOVERY_TIMEOUT,
        clock=clock,
    )


# ============================================================================
# Catalog and User Settings Fixtures
# ============================================================================


@pytest.fixture
def small_catalog():
    """
    Two providers, four models:
    alpha: model-a (high), model-b (low)
    beta:  model-c (medium), reasoner (low, reasoning)
    """
    return InMemoryModelCatalog([
        ModelInfo(id="model-a", provider="alpha", priority=Priority.HIGH),
        ModelInfo(id="model-b", provider="alpha", priority=Priority.LOW),
        ModelInfo(id="model-c", provider="beta", priority=Priority.MEDIUM),
        ModelInfo(id="reasoner", provider="beta", priority=Priority.LOW, is_reasoning_model=True),
    ])


@pytest.fixture
def user_settings():
    """Both providers, one temperature, no instructions: four permutations."""
    return UserSettings(enabled_providers=["alpha", "beta"], temperatures=[0.7])


@pytest.fixture
def messages():
    return [{"role": "user", "content": "Tell me something"}]


# ============================================================================
# Execution Endpoint Fixtures
# ============================================================================


def sse_body(possibility_id: str, tokens=(), error: str | None = None,
             complete: bool = True, done: bool = True) -> bytes:
    """Encode one possibility's events the way the execution endpoint frames them."""
    events = [StreamEvent(type=StreamEventType.POSSIBILITY_START, data={"id": possibility_id})]
    events += [
        StreamEvent(type=StreamEventType.TOKEN, data={"id": possibility_id, "token": token})
        for token in tokens
    ]
    if error is not None:
        events.append(
            StreamEvent(type=StreamEventType.ERROR, data={"id": possibility_id, "message": error})
        )
    elif complete:
        events.append(
            StreamEvent(type=StreamEventType.POSSIBILITY_COMPLETE, data={"id": possibility_id})
        )
    body = "".join(event.format() for event in events)
    if done:
        body += StreamEvent.done_frame()
    return body.encode()


class FakeExecutionEndpoint:
    """
    httpx.MockTransport handler standing in for `POST /possibility/{id}`.

    Every possibility streams "Hello world" unless its provider is listed in
    `failing_providers` (error event), `status_by_provider` (HTTP status) or
    `hanging_providers` (one token, then the stream never ends).
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.paths: list[str] = []
        self.failing_providers: set[str] = set()
        self.status_by_provider: dict[str, int] = {}
        self.hanging_providers: set[str] = set()
        self.release = asyncio.Event()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = orjson.loads(request.content)
        permutation = body["permutation"]
        possibility_id = permutation["id"]
        provider = permutation["provider"]
        self.calls.append(body)
        self.paths.append(request.url.path)

        if provider in self.status_by_provider:
            return httpx.Response(self.status_by_provider[provider], json={"error": "upstream"})
        if provider in self.failing_providers:
            return httpx.Response(200, content=sse_body(possibility_id, ["Hel"], error="boom"))
        if provider in self.hanging_providers:
            return httpx.Response(200, content=self._hang(possibility_id))
        return httpx.Response(200, content=sse_body(possibility_id, ["Hello", " world"]))

    async def _hang(self, possibility_id: str):
        yield sse_body(possibility_id, ["Hel"], complete=False, done=False)
        await self.release.wait()
        yield StreamEvent.done_frame().encode()


@pytest.fixture
def fake_endpoint():
    return FakeExecutionEndpoint()


@pytest.fixture
def execution_client(fake_endpoint):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_endpoint), base_url="http://engine")


@pytest.fixture
def fake_sleep():
    """Replaces asyncio.sleep for retry backoff and stagger delays."""
    return AsyncMock()


@pytest.fixture
def build_session(test_settings, breakers, small_catalog, mock_metrics, execution_client,
                  fake_sleep):
    """Factory for GenerationSession instances wired to the fake execution endpoint."""

    def _build(settings: Settings | None = None):
        return create_generation_session(
            settings or test_settings,
            client=execution_client,
            base_url=EXECUTION_BASE_URL,
            breakers=breakers,
            catalog=small_catalog,
            metrics=mock_metrics,
            sleep=fake_sleep,
        )

    return _build
