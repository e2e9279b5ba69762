# src/bgtasks/tasks/task_api.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.ports import Executor, ProgressCallback
from .task_models import Task, TaskCancelledError, TaskStatus
from .task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")


def start_task(
    scheduler: TaskScheduler,
    type: str,
    message: str,
    executor: Executor[T],
    *,
    payload: Any = None,
    total_items: int | None = None,
) -> tuple[str, asyncio.Task[T]]:
    """
    Convenience helper: create a task and schedule it without waiting.

    Must be called from a running event loop. The returned asyncio.Task resolves to
    the executor result; failures are logged here too, so a caller that never awaits
    it does not get "exception was never retrieved" noise.
    """
    task_id = scheduler.create_task(type, message, payload, total_items)
    handle = asyncio.create_task(scheduler.run_task(task_id, executor))
    handle.add_done_callback(lambda fut: _log_outcome(task_id, fut))
    return task_id, handle


def _log_outcome(task_id: str, fut: asyncio.Future) -> None:
    if fut.cancelled():
        logger.info("Background task %s: asyncio task cancelled", task_id)
        return
    exc = fut.exception()
    if isinstance(exc, TaskCancelledError):
        logger.info("Background task %s cancelled before start", task_id)
    elif exc is not None:
        logger.debug("Background task %s failed: %r", task_id, exc)


@dataclass(slots=True, frozen=True)
class BatchResult:
    task_id: str
    completed: int
    failed: int
    cancelled: bool


async def run_batch(
    scheduler: TaskScheduler,
    type: str,
    message: str,
    items: Sequence[ItemT],
    handler: Callable[[ItemT], Awaitable[Any]],
    *,
    label: Callable[[ItemT], str] = str,
    payload: Any = None,
) -> BatchResult:
    """
    Run handler(item) for every item as one batch task.

    Each success bumps completed_items (progress follows), each exception bumps
    failed_items and is logged; the batch itself still completes. Stops early if
    the task gets cancelled.
    """
    task_id = scheduler.create_task(type, message, payload, total_items=len(items))

    async def executor(report: ProgressCallback) -> BatchResult:
        completed = failed = 0
        for item in items:
            if report.cancelled:
                logger.info("Batch %s cancelled after %d/%d items", task_id, completed + failed, len(items))
                return BatchResult(task_id, completed, failed, cancelled=True)
            try:
                await handler(item)
            except Exception:
                logger.exception("Batch %s: item %s failed", task_id, label(item))
                scheduler.increment_failed(task_id)
                failed += 1
            else:
                scheduler.increment_completed(task_id, label(item))
                completed += 1
        return BatchResult(task_id, completed, failed, cancelled=False)

    return await scheduler.run_task(task_id, executor)


def partition_by_status(tasks: Sequence[Task]) -> dict[TaskStatus, list[Task]]:
    """Split a snapshot into per-status lists (every status present, order kept)."""
    out: dict[TaskStatus, list[Task]] = {s: [] for s in TaskStatus}
    for task in tasks:
        out[task.status].append(task)
    return out
