"""
Bounded Priority Connection Pool for Possibility Execution.

This module provides a generic priority-ordered, bounded-concurrency task
executor. It knows nothing about providers or streaming: a task is an id, a
priority and a coroutine factory.

STAGE-CP: Connection Pool Management
-------------------------------------
CP.1: Task enqueue
CP.2: Task start (slot acquired)
CP.3: Task settle (slot released)
CP.4: Abort / reset
CP.5: Metrics

Guarantees:
- Never more than `max_concurrency` tasks in flight.
- Waiting tasks start in priority order (high, medium, low), FIFO within a
  priority.
- No retries. A task's future settles with its result, or raises the
  exception its `execute` raised.

Author: System Architect
Date: 2025-12-09
"""

import asyncio
import heapq
import itertools
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from possibility_engine.core.config.constants import Priority, Stage
from possibility_engine.core.config.settings import get_settings
from possibility_engine.core.exceptions import TaskAbortedError
from possibility_engine.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


@dataclass(frozen=True)
class PoolTask:
    """A unit of work submitted to the pool. Never mutated after submission."""

    id: str
    priority: Priority
    execute: Callable[[], Awaitable[Any]]


@dataclass(order=True)
class _QueuedTask:
    rank: int
    sequence: int
    task: PoolTask = field(compare=False)
    future: asyncio.Future = field(compare=False)


class PriorityConnectionPool:
    """
    Priority-ordered bounded-concurrency executor.

    STAGE-CP.0: Pool initialization

    Usage:
        pool = PriorityConnectionPool(max_concurrency=6)
        future = pool.enqueue(PoolTask(id="p1", priority=Priority.HIGH, execute=run))
        result = await future
    """

    def __init__(
        self,
        max_concurrency: int | None = None,
        metrics_window: int | None = None,
        on_metrics: Callable[[dict[str, Any]], None] | None = None,
    ):
        settings = get_settings()
        self.max_concurrency = max_concurrency or settings.pool.POOL_MAX_CONCURRENCY
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self._queue: list[_QueuedTask] = []
        self._active: dict[int, tuple[asyncio.Task, _QueuedTask]] = {}
        self._sequence = itertools.count()
        self._epoch = 0
        self._on_metrics = on_metrics

        self._completed = 0
        self._failed = 0
        self._peak_active = 0
        self._execution_times: deque[float] = deque(
            maxlen=metrics_window or settings.pool.POOL_METRICS_WINDOW
        )

        log_stage(logger, "CP.0", "Connection pool initialized",
                  max_concurrency=self.max_concurrency)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(self, task: PoolTask) -> asyncio.Future:
        """
        Submit a task and return a future for its outcome.

        STAGE-CP.1: Task enqueue
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        priority = Priority(task.priority)
        entry = _QueuedTask(priority.rank, next(self._sequence), task, future)
        heapq.heappush(self._queue, entry)

        log_stage(logger, "CP.1", "Task enqueued", level="debug",
                  task_id=task.id, priority=priority.value, queued=len(self._queue))

        self._drain()
        return future

    def _drain(self) -> None:
        while self._queue and len(self._active) < self.max_concurrency:
            entry = heapq.heappop(self._queue)
            if entry.future.done():
                continue
            key = entry.sequence
            running = asyncio.create_task(
                self._run(key, entry, self._epoch), name=f"pool-task-{entry.task.id}"
            )
            self._active[key] = (running, entry)
            self._peak_active = max(self._peak_active, len(self._active))
            log_stage(logger, "CP.2", "Task started", level="debug",
                      task_id=entry.task.id, active=len(self._active))
        self._publish_metrics()

    async def _run(self, key: int, entry: _QueuedTask, epoch: int) -> None:
        start = time.perf_counter()
        try:
            result = await entry.task.execute()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.set_exception(
                    TaskAbortedError(f"Task {entry.task.id} aborted", task_id=entry.task.id)
                )
            raise
        except Exception as e:
            if epoch == self._epoch:
                self._failed += 1
            if not entry.future.done():
                entry.future.set_exception(e)
            log_stage(logger, "CP.3", "Task failed", level="debug",
                      task_id=entry.task.id, error=str(e))
        else:
            if epoch == self._epoch:
                self._completed += 1
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            if epoch == self._epoch:
                self._execution_times.append((time.perf_counter() - start) * 1000)
                self._active.pop(key, None)
                self._drain()

    # ------------------------------------------------------------------
    # Abort / reset
    # ------------------------------------------------------------------

    def abort_task(self, task_id: str) -> bool:
        """
        Drop one queued (not yet started) task.

        STAGE-CP.4: Task abort
        """
        for index, entry in enumerate(self._queue):
            if entry.task.id == task_id:
                self._queue.pop(index)
                heapq.heapify(self._queue)
                if not entry.future.done():
                    entry.future.set_exception(
                        TaskAbortedError(f"Task {task_id} aborted", task_id=task_id)
                    )
                log_stage(logger, "CP.4", "Queued task aborted", task_id=task_id)
                self._publish_metrics()
                return True
        return False

    def reset(self) -> None:
        """
        Drop queued work, cancel in-flight tasks and zero the counters.

        STAGE-CP.4: Pool reset
        """
        dropped = len(self._queue)
        cancelled = len(self._active)

        self._epoch += 1
        queued, self._queue = self._queue, []
        active, self._active = self._active, {}

        # Every dropped or cancelled future settles with TaskAbortedError
        for running, _ in active.values():
            running.cancel()
        for entry in [*queued, *(entry for _, entry in active.values())]:
            if not entry.future.done():
                entry.future.set_exception(
                    TaskAbortedError(f"Task {entry.task.id} aborted", task_id=entry.task.id)
                )

        self._completed = 0
        self._failed = 0
        self._peak_active = 0
        self._execution_times.clear()

        log_stage(logger, Stage.CONNECTION_POOL, "Connection pool reset",
                  dropped=dropped, cancelled=cancelled)
        self._publish_metrics()

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def get_metrics(self) -> dict[str, Any]:
        """
        STAGE-CP.5: Pool metrics
        """
        average = (
            sum(self._execution_times) / len(self._execution_times)
            if self._execution_times
            else 0.0
        )
        return {
            "max_concurrency": self.max_concurrency,
            "active": len(self._active),
            "queued": len(self._queue),
            "completed": self._completed,
            "failed": self._failed,
            "peak_active": self._peak_active,
            "average_execution_time_ms": round(average, 2),
        }

    def _publish_metrics(self) -> None:
        if self._on_metrics is None:
            return
        try:
            self._on_metrics(self.get_metrics())
        except Exception as e:
            logger.warning("Pool metrics listener failed", error=str(e))
