# src/bgtasks/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

Admission control for background tasks inside one process:
- at most max_concurrent tasks hold a slot (and so can be running) at any time,
- excess run_task() calls wait in a FIFO queue,
- a freed slot is handed straight to the oldest waiter (no polling),
- a task cancelled while queued never starts; its run_task() raises TaskCancelledError.

The scheduler is a plain object: build one per app (see bootstrap.create_scheduler)
or per test. It also exposes the registry operations so callers need one handle.
"""

import asyncio
import logging
from collections import deque
from typing import Any, TypeVar

from ..core.ports import CompletionCallback, Executor, TaskListListener, Unsubscribe
from .task_models import (
    Task,
    TaskAlreadyScheduledError,
    TaskCancelledError,
    TaskNotFoundError,
    TaskStats,
    TaskStatus,
)
from .task_registry import TaskRegistry
from .task_runner import TaskRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 2


class TaskScheduler:
    def __init__(
        self,
        registry: TaskRegistry | None = None,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> None:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.registry = registry or TaskRegistry()
        self._max_concurrent = int(max_concurrent)
        # Slots currently held: admitted tasks plus permits handed to waiters not yet resumed.
        self._slots_in_use = 0
        self._waiters: deque[tuple[str, asyncio.Future[None]]] = deque()
        # Ids with a live run_task() call (queued or admitted).
        self._scheduled: set[str] = set()
        self._runner = TaskRunner(self.registry, self._release_slot)
        # Cancel / remove through any API (registry included) must free the queue slot.
        self.registry.add_status_hook(self._on_status_change)

    # ---- introspection ----

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def running_count(self) -> int:
        return self._slots_in_use

    @property
    def queued_ids(self) -> list[str]:
        return [tid for tid, fut in self._waiters if not fut.done()]

    def is_cancelled(self, task_id: str) -> bool:
        task = self.registry.get_task(task_id)
        return task is not None and task.status == TaskStatus.CANCELLED

    # ---- admission ----

    async def run_task(self, task_id: str, executor: Executor[T]) -> T:
        """
        Run executor(report) for task_id once a slot is available.

        Raises:
        - TaskNotFoundError: unknown id
        - TaskCancelledError: cancelled before start (including while queued)
        - TaskAlreadyScheduledError: a run_task() for this id is live, or the task
          is no longer pending
        - whatever the executor raised (the task is marked failed first)
        """
        task = self.registry.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.status == TaskStatus.CANCELLED:
            raise TaskCancelledError(task_id)
        if task_id in self._scheduled or task.status != TaskStatus.PENDING:
            raise TaskAlreadyScheduledError(task_id, task.status)

        self._scheduled.add(task_id)
        try:
            if self._slots_in_use < self._max_concurrent:
                self._slots_in_use += 1
            else:
                await self._wait_for_slot(task_id)
            return await self._runner.run(task_id, executor)
        finally:
            self._scheduled.discard(task_id)

    async def _wait_for_slot(self, task_id: str) -> None:
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((task_id, fut))
        logger.info("Task %s queued position=%d running=%d", task_id, len(self._waiters), self._slots_in_use)

        try:
            await fut
        except asyncio.CancelledError:
            # Caller went away. If a slot was already handed over, pass it on.
            if fut.done() and not fut.cancelled() and fut.exception() is None:
                self._release_slot()
            else:
                self._drop_waiter(task_id)
            raise

    def _release_slot(self) -> None:
        while self._waiters:
            task_id, fut = self._waiters.popleft()
            if fut.done():
                continue
            fut.set_result(None)
            logger.debug("Slot handed to queued task %s", task_id)
            return
        self._slots_in_use -= 1

    def _drop_waiter(self, task_id: str) -> asyncio.Future[None] | None:
        for entry in self._waiters:
            if entry[0] == task_id:
                self._waiters.remove(entry)
                return entry[1]
        return None

    def _on_status_change(self, task_id: str, status: TaskStatus | None) -> None:
        # Called for cancelled (status) and removed (None) tasks.
        self._reject_waiter(task_id)

    def _reject_waiter(self, task_id: str) -> None:
        fut = self._drop_waiter(task_id)
        if fut is not None and not fut.done():
            fut.set_exception(TaskCancelledError(task_id))
            logger.info("Task %s removed from queue", task_id)

    # ---- registry facade ----

    def create_task(
        self,
        type: str,
        message: str,
        payload: Any = None,
        total_items: int | None = None,
    ) -> str:
        return self.registry.create_task(type, message, payload, total_items)

    def get_task(self, task_id: str) -> Task | None:
        return self.registry.get_task(task_id)

    def get_all_tasks(self) -> list[Task]:
        return self.registry.get_all_tasks()

    def update_task(self, task_id: str, **fields: Any) -> None:
        self.registry.update_task(task_id, **fields)

    def increment_completed(self, task_id: str, current_item: str | None = None) -> None:
        self.registry.increment_completed(task_id, current_item)

    def increment_failed(self, task_id: str) -> None:
        self.registry.increment_failed(task_id)

    def cancel_task(self, task_id: str) -> bool:
        return self.registry.cancel_task(task_id)

    def remove_task(self, task_id: str) -> None:
        self.registry.remove_task(task_id)

    def clear_completed(self) -> int:
        return self.registry.clear_completed()

    def get_stats(self) -> TaskStats:
        return self.registry.get_stats()

    def subscribe(self, listener: TaskListListener) -> Unsubscribe:
        return self.registry.subscribe(listener)

    def on_task_complete(self, callback: CompletionCallback) -> Unsubscribe:
        return self.registry.on_task_complete(callback)
