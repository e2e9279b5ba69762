# src/bgtasks/tasks/batch_progress.py

"""
Batch progress calculator.

Batch tasks (imports, bulk syncs) report item counts instead of percentages.
Progress is derived from completed items only; failed items never move it.
"""

from __future__ import annotations

from .task_models import Task


def clamp_progress(value: float | int) -> int:
    return max(0, min(100, int(value)))


def compute_progress(completed: int, total: int | None) -> int:
    """floor(100 * completed / total), capped to [0, 100]. Empty totals yield 0."""
    if not total or total <= 0:
        return 0
    return clamp_progress((100 * max(0, completed)) // total)


def apply_completed(task: Task, current_item: str | None = None) -> None:
    """Bump completed_items in place and refresh derived progress."""
    task.completed_items += 1
    if current_item is not None:
        task.current_item = current_item
    if task.total_items is not None:
        task.progress = compute_progress(task.completed_items, task.total_items)


def apply_failed(task: Task) -> None:
    task.failed_items += 1
