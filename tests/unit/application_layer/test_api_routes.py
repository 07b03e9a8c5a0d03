"""
Unit Tests for the HTTP surface

Uses FastAPI's TestClient with the simulated provider running without
latency. The aggregate endpoint reaches the execution endpoint of the same
application over ASGI.
"""

import math

import orjson
import pytest
from fastapi.testclient import TestClient

from possibility_engine.application.app import create_app
from possibility_engine.core.config.constants import CircuitState
from possibility_engine.generation.models import Permutation, SystemInstruction
from possibility_engine.providers.simulated_provider import (
    SimulatedProvider,
    prepare_messages,
    probability_from_logprobs,
)
from possibility_engine.streaming.event_parser import StreamEventParser
from possibility_engine.streaming.models import ChatMessage

PERMUTATION = {
    "id": "openai_gpt-4o_temp0.7_inst-default",
    "provider": "openai",
    "model": "gpt-4o",
    "temperature": 0.7,
    "systemInstruction": {"id": "default", "name": "Default", "content": ""},
}


def _execution_body(**options):
    return {
        "messages": [{"role": "user", "content": "Tell me a story"}],
        "permutation": PERMUTATION,
        "options": {"maxTokens": 5, **options},
    }


def _events(text: str):
    return StreamEventParser().feed(text)


@pytest.fixture
def app(test_settings):
    provider = SimulatedProvider(min_latency=0, max_latency=0, first_token_delay=(0, 0))
    return create_app(test_settings, provider=provider)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.mark.unit
class TestExecutionEndpoint:
    def test_streams_one_possibility(self, client):
        response = client.post(f"/api/v1/possibility/{PERMUTATION['id']}", json=_execution_body())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.endswith("data: [DONE]\n\n")

        frames = _events(response.text)
        types = [f.event.type.value for f in frames if not f.is_done]
        assert types[0] == "possibility_start"
        assert types[-2:] == ["probability", "possibility_complete"]
        assert types.count("token") == 5

    def test_id_mismatch_is_rejected(self, client):
        response = client.post("/api/v1/possibility/other-id", json=_execution_body())

        assert response.status_code == 400
        assert response.json() == {"error": "Permutation ID mismatch"}

    def test_non_streaming_returns_possibility(self, client):
        response = client.post(
            f"/api/v1/possibility/{PERMUTATION['id']}", json=_execution_body(stream=False)
        )

        assert response.status_code == 200
        possibility = response.json()["possibility"]
        assert possibility["id"] == PERMUTATION["id"]
        assert possibility["model"] == "gpt-4o"
        assert possibility["content"].startswith("[gpt-4o]")
        assert 0 < possibility["probability"] <= 1

    def test_unknown_model_non_streaming(self, client):
        body = _execution_body(stream=False)
        body["permutation"] = {**PERMUTATION, "model": "no-such-model"}

        response = client.post(f"/api/v1/possibility/{PERMUTATION['id']}", json=body)

        assert response.status_code == 502
        assert "not found" in response.json()["error"]

    def test_unknown_model_streaming(self, client):
        body = _execution_body()
        body["permutation"] = {**PERMUTATION, "model": "no-such-model"}

        response = client.post(f"/api/v1/possibility/{PERMUTATION['id']}", json=body)

        frames = _events(response.text)
        assert frames[0].event.type.value == "error"
        assert frames[-1].is_done

    def test_empty_messages_rejected(self, client):
        body = _execution_body()
        body["messages"] = []
        response = client.post(f"/api/v1/possibility/{PERMUTATION['id']}", json=body)
        assert response.status_code == 422

    def test_request_id_header_is_echoed(self, client):
        response = client.post(
            f"/api/v1/possibility/{PERMUTATION['id']}",
            json=_execution_body(),
            headers={"X-Request-ID": "req-123"},
        )
        assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.unit
class TestAggregateEndpoint:
    def test_streams_every_possibility(self, client):
        response = client.post(
            "/api/v1/possibilities/stream",
            json={
                "messages": [{"role": "user", "content": "Hello"}],
                "settings": {
                    "enabledProviders": ["openai"],
                    "enabledModels": ["gpt-4o"],
                    "temperatures": [0.3, 0.9],
                },
            },
        )

        assert response.status_code == 200
        assert response.text.endswith("data: [DONE]\n\n")

        events = [f.event for f in _events(response.text) if not f.is_done]
        completed = {e.possibility_id for e in events if e.type.value == "possibility_complete"}
        assert len(completed) == 2

        done = [e for e in events if e.type.value == "done"]
        assert len(done) == 1
        assert done[0].data["state"] == "completed"
        assert done[0].data["settled"] == 2

    def test_no_enabled_providers(self, client):
        response = client.post(
            "/api/v1/possibilities/stream",
            json={"messages": [{"role": "user", "content": "Hello"}], "settings": {}},
        )

        events = [f.event for f in _events(response.text) if not f.is_done]
        assert [e.type.value for e in events] == ["done"]
        assert events[0].data["total"] == 0


@pytest.mark.unit
class TestOperationalEndpoints:
    def test_root(self, client):
        data = client.get("/").json()
        assert data["api"] == "/api/v1"
        assert data["health"] == "/health"

    def test_health_healthy(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["components"]["provider"]["provider"] == "simulated"

    def test_health_degraded_with_open_breaker(self, client, app):
        app.state.breakers.get_breaker("openai").force_state(CircuitState.OPEN)

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["components"]["unhealthy_providers"] == ["openai"]
        assert data["components"]["circuit_breakers"]["openai"] == "open"

    def test_liveness(self, client):
        assert client.get("/health/live").json()["status"] == "alive"

    def test_circuit_breaker_stats_and_reset(self, client, app):
        app.state.breakers.get_breaker("openai").force_state(CircuitState.OPEN)

        stats = client.get("/admin/circuit-breakers").json()
        assert stats["circuit_breakers"]["openai"]["state"] == "open"
        assert stats["unhealthy"] == ["openai"]

        response = client.post("/admin/circuit-breakers/reset")
        assert response.json() == {"reset": ["openai"]}
        assert app.state.breakers.get_breaker("openai").get_state() == CircuitState.CLOSED

    def test_prometheus_metrics(self, client):
        response = client.get("/admin/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert b"possibility_generations_started_total" in response.content


@pytest.mark.unit
class TestSimulatedProviderHelpers:
    def test_prepare_messages_prepends_system_message(self):
        messages = [ChatMessage(role="user", content="Hi")]
        instruction = SystemInstruction(id="terse", name="Terse", content="Be terse.")

        prepared = prepare_messages(messages, "You are helpful.", instruction)

        assert prepared[0] == ChatMessage(role="system", content="You are helpful.\n\nBe terse.")
        assert prepared[1:] == messages

    def test_prepare_messages_without_system_content(self):
        messages = [ChatMessage(role="user", content="Hi")]
        assert prepare_messages(messages) == messages

    def test_probability_from_logprobs(self):
        assert probability_from_logprobs([]) == 0.0
        assert probability_from_logprobs([0.0, 0.0]) == 1.0
        assert math.isclose(probability_from_logprobs([-1.0, -3.0]), math.exp(-2.0))

    @pytest.mark.asyncio
    async def test_stream_is_deterministic_per_permutation(self):
        provider = SimulatedProvider(min_latency=0, max_latency=0, first_token_delay=(0, 0))
        permutation = Permutation.model_validate(PERMUTATION)
        messages = [ChatMessage(role="user", content="Same prompt")]

        first = [orjson.dumps(e.data) async for e in
                 provider.stream_possibility(messages, permutation, 20)]
        second = [orjson.dumps(e.data) async for e in
                  provider.stream_possibility(messages, permutation, 20)]
        assert first == second
