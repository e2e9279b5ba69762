# src/bgtasks/tasks/task_registry.py

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from ..core.ports import CompletionCallback, TaskListListener, Unsubscribe
from .batch_progress import apply_completed, apply_failed, clamp_progress, compute_progress
from .notifications import NotificationBus
from .task_models import (
    MUTABLE_FIELDS,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    Task,
    TaskStats,
    TaskStatus,
    can_transition,
)

logger = logging.getLogger(__name__)

# (task_id, new_status); new_status is None when the task was removed.
StatusHook = Callable[[str, TaskStatus | None], None]

# Statuses callers may set through update_task(). Running / completed / failed
# belong to the runner (mark_running / finish_task) so admission stays bounded.
_CALLER_STATUSES = frozenset({TaskStatus.CANCELLED})


class TaskRegistry:
    """
    In-memory task store.

    All reads and writes of task records go through this class. Reads hand out
    copies, so callers and listeners cannot mutate stored records directly.

    Lenient by design toward racing callers: update/increment/remove on an
    unknown id are silent no-ops.
    """

    def __init__(self, bus: NotificationBus | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        self._status_hooks: list[StatusHook] = []
        self.bus = bus or NotificationBus()
        self.bus.bind_snapshot(self.get_all_tasks)

    # ---- low-level helpers ----

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def _notify(self) -> None:
        self.bus.publish_tasks(self.get_all_tasks())

    def add_status_hook(self, hook: StatusHook) -> Unsubscribe:
        """
        Internal hook for owners of scheduling state (TaskScheduler): called after a
        task is cancelled or removed, whichever API did it. Hooks must not raise.
        """
        self._status_hooks.append(hook)

        def remove() -> None:
            if hook in self._status_hooks:
                self._status_hooks.remove(hook)

        return remove

    def _run_status_hooks(self, task_id: str, status: TaskStatus | None) -> None:
        for hook in list(self._status_hooks):
            hook(task_id, status)

    def _apply(self, task: Task, fields: dict[str, Any], *, keep_progress: bool = False) -> TaskStatus:
        """Write fields into the stored record. Returns the previous status."""
        old_status = task.status
        for name, value in fields.items():
            setattr(task, name, value)

        if task.total_items is not None and not keep_progress:
            # Batch progress always follows the item counters.
            task.progress = compute_progress(task.completed_items, task.total_items)
        else:
            task.progress = clamp_progress(task.progress)

        task.updated_at = time.time()
        return old_status

    def _set_status(self, task_id: str, status: TaskStatus, *, keep_progress: bool = False, **fields: Any) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        if not can_transition(task.status, status):
            raise InvalidTransitionError(task_id, task.status, status)
        old_status = self._apply(task, {**fields, "status": status}, keep_progress=keep_progress)
        self._notify()
        if status == TaskStatus.CANCELLED and old_status != TaskStatus.CANCELLED:
            self._run_status_hooks(task_id, status)
        return True

    # ---- reads ----

    def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return replace(task) if task is not None else None

    def get_all_tasks(self) -> list[Task]:
        """Copies, newest first. Ties on created_at keep newest-inserted first."""
        newest_first = [replace(t) for t in reversed(self._tasks.values())]
        newest_first.sort(key=lambda t: t.created_at, reverse=True)
        return newest_first

    def tasks_by_status(self, status: TaskStatus) -> list[Task]:
        return [t for t in self.get_all_tasks() if t.status == status]

    def get_stats(self) -> TaskStats:
        counts = {s: 0 for s in TaskStatus}
        for task in self._tasks.values():
            counts[task.status] += 1
        return TaskStats(
            total=len(self._tasks),
            pending=counts[TaskStatus.PENDING],
            running=counts[TaskStatus.RUNNING],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            cancelled=counts[TaskStatus.CANCELLED],
        )

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ---- writes ----

    def create_task(
        self,
        type: str,
        message: str,
        payload: Any = None,
        total_items: int | None = None,
    ) -> str:
        now = time.time()
        task_id = self._new_id()
        while task_id in self._tasks:
            task_id = self._new_id()

        self._tasks[task_id] = Task(
            id=task_id,
            type=type,
            status=TaskStatus.PENDING,
            progress=0,
            message=message,
            created_at=now,
            updated_at=now,
            payload=payload,
            total_items=total_items,
        )
        logger.debug("Task created id=%s type=%s total_items=%s", task_id, type, total_items)
        self._notify()
        return task_id

    def update_task(self, task_id: str, **fields: Any) -> None:
        """
        Merge fields into a task and notify.

        - unknown id: no-op
        - unknown field name: TypeError
        - status: callers may only cancel (or re-send the current status); starting
          and finishing tasks is the runner's job. Anything else raises
          InvalidTransitionError.
        - progress is clamped; with total_items set it is derived from completed_items
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise TypeError(f"update_task() got unknown fields: {', '.join(sorted(unknown))}")

        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("update_task: no task id=%s", task_id)
            return

        if "status" in fields:
            new_status = TaskStatus(fields.pop("status"))
            if new_status != task.status:
                if new_status not in _CALLER_STATUSES or not can_transition(task.status, new_status):
                    raise InvalidTransitionError(task_id, task.status, new_status)
                self._set_status(task_id, new_status, **fields)
                logger.info("Task %s -> cancelled", task_id)
                return

        self._apply(task, fields)
        self._notify()

    def increment_completed(self, task_id: str, current_item: str | None = None) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("increment_completed: no task id=%s", task_id)
            return
        apply_completed(task, current_item)
        task.updated_at = time.time()
        self._notify()

    def increment_failed(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.debug("increment_failed: no task id=%s", task_id)
            return
        apply_failed(task)
        task.updated_at = time.time()
        self._notify()

    def cancel_task(self, task_id: str) -> bool:
        """Mark a pending/running task cancelled. Returns False if nothing changed."""
        task = self._tasks.get(task_id)
        if task is None or task.status not in (TaskStatus.PENDING, TaskStatus.RUNNING):
            return False
        self._set_status(task_id, TaskStatus.CANCELLED)
        logger.info("Task %s -> cancelled", task_id)
        return True

    def mark_running(self, task_id: str) -> None:
        """Admission write used by TaskRunner: pending -> running, progress reset."""
        self._set_status(task_id, TaskStatus.RUNNING, progress=0)

    def finish_task(self, task_id: str, status: TaskStatus, **fields: Any) -> Task | None:
        """
        Move a running task into completed/failed and announce it on the completion
        channel. Returns the post-transition snapshot, or None if the task is gone or
        no longer running (e.g. cancelled mid-flight).

        Completed tasks end at progress 100 even in batch mode (some items may have
        failed); failed tasks keep whatever progress they had.
        """
        if status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            raise ValueError(f"finish_task() expects completed or failed, got {status.value}")
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.RUNNING:
            return None
        if status == TaskStatus.COMPLETED:
            fields["progress"] = 100
        self._set_status(task_id, status, keep_progress=status == TaskStatus.COMPLETED, **fields)
        snapshot = self.get_task(task_id)
        if snapshot is not None:
            self.bus.publish_completion(snapshot)
        return snapshot

    def remove_task(self, task_id: str) -> None:
        removed = self._tasks.pop(task_id, None) is not None
        if removed:
            self.bus.forget(task_id)
        self._notify()
        if removed:
            self._run_status_hooks(task_id, None)

    def clear_completed(self) -> int:
        done = [tid for tid, t in self._tasks.items() if t.status in TERMINAL_STATUSES]
        for tid in done:
            del self._tasks[tid]
            self.bus.forget(tid)
        if done:
            logger.info("Cleared %d finished tasks", len(done))
        self._notify()
        return len(done)

    # ---- notifications ----

    def subscribe(self, listener: TaskListListener) -> Unsubscribe:
        return self.bus.subscribe(listener)

    def on_task_complete(self, callback: CompletionCallback) -> Unsubscribe:
        return self.bus.on_task_complete(callback)
