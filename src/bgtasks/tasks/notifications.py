# src/bgtasks/tasks/notifications.py

from __future__ import annotations

"""
Notification bus.

Two channels that must stay separate:
- task-list listeners (level-triggered): get the full ordered snapshot after every
  mutation, and the current snapshot immediately on subscribe;
- completion callbacks (edge-triggered): fire once per task when it enters
  completed or failed. Cancelled tasks do not fire.

Listeners may be plain callables or coroutine functions. A listener that raises is
logged and skipped; it never breaks the mutation that triggered it.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable

from ..core.ports import CompletionCallback, TaskListListener, Unsubscribe
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)

_COMPLETION_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class NotificationBus:
    def __init__(self, snapshot: Callable[[], list[Task]] | None = None) -> None:
        self._snapshot = snapshot or list
        self._listeners: list[TaskListListener] = []
        self._completion_callbacks: list[CompletionCallback] = []
        # Task ids whose completion has already been announced.
        self._completed_ids: set[str] = set()
        # Strong refs to scheduled async listeners; the loop only keeps weak ones.
        self._pending: set[asyncio.Future] = set()

    def bind_snapshot(self, snapshot: Callable[[], list[Task]]) -> None:
        self._snapshot = snapshot

    # ---- task-list channel ----

    def subscribe(self, listener: TaskListListener) -> Unsubscribe:
        self._listeners.append(listener)
        self._deliver(listener, self._snapshot(), channel="tasks")

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish_tasks(self, tasks: list[Task]) -> None:
        # Iterate over a copy: listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            self._deliver(listener, tasks, channel="tasks")

    # ---- completion channel ----

    def on_task_complete(self, callback: CompletionCallback) -> Unsubscribe:
        self._completion_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._completion_callbacks:
                self._completion_callbacks.remove(callback)

        return unsubscribe

    def publish_completion(self, task: Task) -> bool:
        """
        Announce a finished task. Returns False (and fires nothing) if the task is
        not completed/failed or was already announced.
        """
        if task.status not in _COMPLETION_STATUSES:
            return False
        if task.id in self._completed_ids:
            logger.debug("Completion for task %s already announced", task.id)
            return False
        self._completed_ids.add(task.id)

        for callback in list(self._completion_callbacks):
            self._deliver(callback, task, channel="completion")
        return True

    def forget(self, task_id: str) -> None:
        self._completed_ids.discard(task_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def completion_callback_count(self) -> int:
        return len(self._completion_callbacks)

    # ---- delivery ----

    def _deliver(self, fn: Callable, arg: object, *, channel: str) -> None:
        try:
            result = fn(arg)
        except Exception:
            logger.exception("%s listener %r failed", channel, fn)
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("%s listener %r returned an awaitable outside a running loop", channel, fn)
                if inspect.iscoroutine(result):
                    result.close()
                return
            fut = asyncio.ensure_future(result, loop=loop)
            self._pending.add(fut)
            fut.add_done_callback(self._pending.discard)
            fut.add_done_callback(lambda f: _log_listener_failure(f, channel, fn))


def _log_listener_failure(fut: asyncio.Future, channel: str, fn: Callable) -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        logger.error("%s listener %r failed", channel, fn, exc_info=exc)
