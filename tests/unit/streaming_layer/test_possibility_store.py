"""
Unit Tests for PossibilityStore and Cancellation Tokens
"""

import asyncio

import pytest

from possibility_engine.core.config.constants import Priority
from possibility_engine.generation.models import PossibilityMetadata
from possibility_engine.streaming.cancellation import CancellationRegistry, CancellationToken
from possibility_engine.streaming.possibility_store import PossibilityStore


def _metadata(possibility_id, order=0):
    return PossibilityMetadata(
        id=possibility_id,
        provider="alpha",
        model="model-a",
        temperature=0.7,
        priority=Priority.HIGH,
        estimated_tokens=100,
        order=order,
    )


@pytest.fixture
def store():
    store = PossibilityStore()
    store.initialize([_metadata("p1"), _metadata("p2", order=1)])
    return store


@pytest.mark.unit
class TestPossibilityStore:
    def test_initialize_creates_pending_entries(self, store):
        states = store.snapshot()
        assert [s.id for s in states] == ["p1", "p2"]
        assert all(s.content == "" and not s.is_complete for s in states)
        assert store.get_stats() == {"total": 2, "completed": 0, "pending": 2}

    def test_tokens_accumulate(self, store):
        store.append_token("p1", "Hel")
        updated = store.append_token("p1", "lo")
        assert updated.content == "Hello"
        assert store.get("p2").content == ""

    def test_complete_is_idempotent(self, store):
        assert store.mark_complete("p1").is_complete
        assert store.mark_complete("p1") is None
        assert store.get_stats()["completed"] == 1

    def test_tokens_ignored_after_completion(self, store):
        store.mark_complete("p1")
        assert store.append_token("p1", "late") is None
        assert store.get("p1").content == ""

    def test_probability_and_error(self, store):
        assert store.set_probability("p1", 0.42, {"tokens": []}).probability == 0.42
        assert store.mark_error("p2", "boom").error == "boom"

    def test_unknown_id_ignored(self, store):
        assert store.append_token("ghost", "x") is None
        assert "ghost" not in store

    def test_snapshots_are_copies(self, store):
        snapshot = store.get("p1")
        snapshot.content = "mutated"
        assert store.get("p1").content == ""

    def test_freeze_rejects_writes_until_initialize(self, store):
        store.freeze()
        assert store.append_token("p1", "x") is None
        assert store.mark_complete("p1") is None

        store.initialize([_metadata("p3")])
        assert not store.frozen
        assert store.append_token("p3", "x").content == "x"

    def test_clear(self, store):
        store.clear()
        assert len(store) == 0
        assert store.snapshot() == []

    def test_to_dict_uses_wire_names(self, store):
        data = store.get("p1").to_dict()
        assert data["isComplete"] is False
        assert data["priority"] == "high"
        assert data["provider"] == "alpha"


@pytest.mark.unit
class TestCancellation:
    def test_token_cancel_once(self):
        token = CancellationToken("p1")
        token.cancel("user")
        token.cancel("again")
        assert token.is_cancelled
        assert token.reason == "user"

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken("p1")
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)

    def test_cancelling_one_token_leaves_others(self):
        registry = CancellationRegistry()
        first = registry.create("p1")
        second = registry.create("p2")

        assert registry.cancel("p1") is True
        assert first.is_cancelled
        assert not second.is_cancelled
        assert registry.cancel("missing") is False

    def test_cancel_all(self):
        registry = CancellationRegistry()
        tokens = [registry.create(f"p{i}") for i in range(3)]

        assert registry.cancel_all("user_cancelled") == 3
        assert all(t.is_cancelled and t.reason == "user_cancelled" for t in tokens)
        assert len(registry) == 0

    def test_release_keeps_replacement(self):
        registry = CancellationRegistry()
        old = registry.create("p1")
        new = registry.create("p1")

        registry.release(old)
        assert registry.get("p1") is new

        registry.release(new)
        assert registry.active_count == 0
