# src/bgtasks/tasks/task_runner.py

from __future__ import annotations

"""
Executor runner.

Drives one admitted task through running -> completed / failed:
- pre-check: a task cancelled before it got its slot never starts,
- running + progress 0, then await the caller's executor with a bound reporter,
- success: completed + progress 100, completion callbacks fire, result returned,
- failure: failed + error text, completion callbacks fire, exception re-raised,
- always: give the concurrency slot back.

Cancellation is cooperative. An executor that never looks at report.cancelled
runs to the end; its result still reaches the caller but the task stays cancelled.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from ..core.ports import Executor
from .batch_progress import clamp_progress
from .task_models import TaskCancelledError, TaskNotFoundError, TaskStatus
from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN_ERROR = "Unknown error"


class ProgressReporter:
    """
    Progress callback handed to an executor, bound to one task id.

    On batch tasks (total_items set) the percentage is derived from item counters,
    so only the message part of a report takes effect.
    """

    __slots__ = ("_registry", "task_id")

    def __init__(self, registry: TaskRegistry, task_id: str) -> None:
        self._registry = registry
        self.task_id = task_id

    def __call__(self, progress: int, message: str | None = None) -> None:
        fields: dict[str, Any] = {"progress": clamp_progress(progress)}
        if message:
            fields["message"] = message
        logger.debug("Task %s progress=%s", self.task_id, fields["progress"])
        self._registry.update_task(self.task_id, **fields)

    @property
    def cancelled(self) -> bool:
        """True once the task was cancelled (or removed). Executors may poll this."""
        task = self._registry.get_task(self.task_id)
        return task is None or task.status == TaskStatus.CANCELLED


def describe_error(exc: BaseException) -> str:
    return str(exc).strip() or UNKNOWN_ERROR


class TaskRunner:
    def __init__(self, registry: TaskRegistry, release: Callable[[], None]) -> None:
        self._registry = registry
        self._release = release

    async def run(self, task_id: str, executor: Executor[T]) -> T:
        """Run an admitted task. The caller must hold a slot; it is released here."""
        try:
            task = self._registry.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status == TaskStatus.CANCELLED:
                logger.info("Task %s was cancelled before start; skipping executor", task_id)
                raise TaskCancelledError(task_id)

            self._registry.mark_running(task_id)
            logger.info("Task %s -> running type=%s", task_id, task.type)

            try:
                result = await executor(ProgressReporter(self._registry, task_id))
            except asyncio.CancelledError:
                self._registry.cancel_task(task_id)
                raise
            except Exception as exc:
                error = describe_error(exc)
                if self._registry.finish_task(task_id, TaskStatus.FAILED, error=error) is None:
                    logger.info("Task %s failed after it left running state: %s", task_id, error)
                else:
                    logger.warning("Task %s -> failed: %s", task_id, error)
                raise

            if self._registry.finish_task(task_id, TaskStatus.COMPLETED, progress=100) is None:
                logger.info("Task %s finished after it left running state; status kept", task_id)
            else:
                logger.info("Task %s -> completed", task_id)
            return result
        finally:
            self._release()
