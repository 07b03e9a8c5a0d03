"""
Unit Tests for PriorityConnectionPool

Tests the concurrency bound, priority-then-FIFO start order, failure
propagation through futures, abort and reset.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from possibility_engine.core.config.constants import Priority
from possibility_engine.core.exceptions import TaskAbortedError
from possibility_engine.core.resilience.connection_pool import PoolTask, PriorityConnectionPool


def _recording_task(name, started):
    async def run():
        started.append(name)
        await asyncio.sleep(0)
        return name

    return run


@pytest.mark.unit
class TestPoolScheduling:
    @pytest.mark.asyncio
    async def test_never_exceeds_max_concurrency(self):
        pool = PriorityConnectionPool(max_concurrency=2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            for _ in range(3):
                await asyncio.sleep(0)
            running -= 1

        priorities = [Priority.LOW, Priority.HIGH, Priority.MEDIUM, Priority.HIGH, Priority.LOW]
        futures = [
            pool.enqueue(PoolTask(id=f"t{i}", priority=priority, execute=work))
            for i, priority in enumerate(priorities)
        ]
        assert pool.active_count == 2
        assert pool.queued_count == 3

        await asyncio.gather(*futures)

        assert peak == 2
        metrics = pool.get_metrics()
        assert metrics["peak_active"] == 2
        assert metrics["completed"] == 5
        assert metrics["active"] == 0
        assert metrics["queued"] == 0

    @pytest.mark.asyncio
    async def test_waiting_tasks_start_in_priority_then_fifo_order(self):
        pool = PriorityConnectionPool(max_concurrency=1)
        started = []
        gate = asyncio.Event()

        async def blocker():
            await gate.wait()
            return "blocker"

        futures = [pool.enqueue(PoolTask(id="blocker", priority=Priority.LOW, execute=blocker))]
        for name, priority in [
            ("low", Priority.LOW),
            ("medium-1", Priority.MEDIUM),
            ("high-1", Priority.HIGH),
            ("medium-2", Priority.MEDIUM),
            ("high-2", Priority.HIGH),
        ]:
            futures.append(
                pool.enqueue(PoolTask(id=name, priority=priority,
                                      execute=_recording_task(name, started)))
            )

        gate.set()
        results = await asyncio.gather(*futures)

        assert started == ["high-1", "high-2", "medium-1", "medium-2", "low"]
        assert results[0] == "blocker"

    @pytest.mark.asyncio
    async def test_failure_settles_future_with_exception(self):
        pool = PriorityConnectionPool(max_concurrency=2)

        async def boom():
            raise ValueError("provider exploded")

        future = pool.enqueue(PoolTask(id="t1", priority=Priority.HIGH, execute=boom))
        with pytest.raises(ValueError):
            await future

        assert pool.get_metrics()["failed"] == 1

    @pytest.mark.asyncio
    async def test_no_retries(self):
        pool = PriorityConnectionPool(max_concurrency=1)
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            raise RuntimeError("once")

        with pytest.raises(RuntimeError):
            await pool.enqueue(PoolTask(id="t1", priority=Priority.HIGH, execute=flaky))
        assert calls == 1

    def test_invalid_concurrency_rejected(self):
        with pytest.raises(ValueError):
            PriorityConnectionPool(max_concurrency=-1)


@pytest.mark.unit
class TestPoolAbortAndReset:
    @pytest.mark.asyncio
    async def test_abort_queued_task(self):
        pool = PriorityConnectionPool(max_concurrency=1)
        gate = asyncio.Event()

        running = pool.enqueue(PoolTask(id="running", priority=Priority.HIGH, execute=gate.wait))
        queued = pool.enqueue(PoolTask(id="queued", priority=Priority.HIGH, execute=gate.wait))

        assert pool.abort_task("queued") is True
        assert pool.abort_task("running") is False
        with pytest.raises(TaskAbortedError):
            await queued

        gate.set()
        await running

    @pytest.mark.asyncio
    async def test_reset_cancels_running_and_drops_queued(self):
        pool = PriorityConnectionPool(max_concurrency=1)
        never = asyncio.Event()

        running = pool.enqueue(PoolTask(id="running", priority=Priority.HIGH, execute=never.wait))
        queued = pool.enqueue(PoolTask(id="queued", priority=Priority.LOW, execute=never.wait))
        await asyncio.sleep(0)

        pool.reset()

        for future in (running, queued):
            with pytest.raises(TaskAbortedError):
                await future
        metrics = pool.get_metrics()
        assert metrics["active"] == 0
        assert metrics["queued"] == 0
        assert metrics["completed"] == 0

    @pytest.mark.asyncio
    async def test_pool_usable_after_reset(self):
        pool = PriorityConnectionPool(max_concurrency=1)
        never = asyncio.Event()
        stale = pool.enqueue(PoolTask(id="stale", priority=Priority.HIGH, execute=never.wait))
        await asyncio.sleep(0)
        pool.reset()
        await asyncio.gather(stale, return_exceptions=True)

        started = []
        await pool.enqueue(
            PoolTask(id="fresh", priority=Priority.HIGH, execute=_recording_task("fresh", started))
        )
        assert started == ["fresh"]
        assert pool.get_metrics()["completed"] == 1

    @pytest.mark.asyncio
    async def test_metrics_listener(self):
        listener = MagicMock()
        pool = PriorityConnectionPool(max_concurrency=1, on_metrics=listener)

        await pool.enqueue(PoolTask(id="t1", priority=Priority.HIGH,
                                    execute=_recording_task("t1", [])))

        assert listener.called
        assert listener.call_args.args[0]["max_concurrency"] == 1
