# src/bgtasks/tasks/task_models.py

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Generic, TypeVar

PayloadT = TypeVar("PayloadT")


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Allowed edges:
    - pending -> running -> completed / failed
    - pending -> cancelled
    - running -> cancelled
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(old: TaskStatus, new: TaskStatus) -> bool:
    """Same-status writes are allowed (they are not transitions)."""
    return old == new or new in _TRANSITIONS[old]


class TaskError(Exception):
    """Base class for scheduler errors."""


class TaskNotFoundError(TaskError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise.
        return str(self.args[0])


class TaskCancelledError(TaskError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task cancelled: {task_id}")
        self.task_id = task_id


class TaskAlreadyScheduledError(TaskError):
    def __init__(self, task_id: str, status: TaskStatus | None = None) -> None:
        detail = f" (status={status.value})" if status is not None else ""
        super().__init__(f"Task already scheduled: {task_id}{detail}")
        self.task_id = task_id
        self.status = status


class InvalidTransitionError(TaskError, ValueError):
    def __init__(self, task_id: str, old: TaskStatus, new: TaskStatus) -> None:
        super().__init__(f"Task {task_id}: cannot go from {old.value} to {new.value}")
        self.task_id = task_id
        self.old = old
        self.new = new


@dataclass(slots=True)
class Task(Generic[PayloadT]):
    id: str
    type: str
    status: TaskStatus
    progress: int
    message: str
    created_at: float
    updated_at: float

    payload: PayloadT | None = None
    error: str | None = None

    # Batch fields (set total_items to derive progress from item counts).
    total_items: int | None = None
    completed_items: int = 0
    failed_items: int = 0
    current_item: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_batch(self) -> bool:
        return self.total_items is not None


# Fields update_task() accepts. id / created_at are fixed at creation.
MUTABLE_FIELDS = frozenset(
    {
        "type",
        "status",
        "progress",
        "message",
        "payload",
        "error",
        "total_items",
        "completed_items",
        "failed_items",
        "current_item",
    }
)


@dataclass(slots=True, frozen=True)
class TaskStats:
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
