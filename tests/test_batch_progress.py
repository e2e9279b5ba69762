# tests/test_batch_progress.py

from __future__ import annotations

import pytest

from bgtasks.tasks.batch_progress import compute_progress
from bgtasks.tasks.task_models import TaskStatus
from bgtasks.tasks.task_registry import TaskRegistry
from bgtasks.tasks.task_runner import ProgressReporter


@pytest.mark.parametrize(
    ("completed", "total", "expected"),
    [
        (0, 10, 0),
        (1, 3, 33),
        (2, 3, 66),
        (3, 3, 100),
        (5, 3, 100),
        (7, 0, 0),
        (7, None, 0),
    ],
)
def test_compute_progress(completed, total, expected) -> None:
    assert compute_progress(completed, total) == expected


@pytest.mark.parametrize("total", [1, 3, 7, 100])
def test_progress_law_after_k_increments(registry: TaskRegistry, total: int) -> None:
    tid = registry.create_task("import", "rows", total_items=total)
    for k in range(1, total + 3):
        registry.increment_completed(tid)
        assert registry.get_task(tid).progress == (100 * min(k, total)) // total


def test_import_scenario_completed_then_failed(registry: TaskRegistry) -> None:
    tid = registry.create_task("import", "Importing", None, 100)

    for _ in range(37):
        registry.increment_completed(tid)
    assert registry.get_task(tid).progress == 37

    for _ in range(5):
        registry.increment_failed(tid)
    task = registry.get_task(tid)
    assert task.progress == 37
    assert task.failed_items == 5
    assert task.completed_items == 37


def test_increment_completed_records_current_item(registry: TaskRegistry) -> None:
    tid = registry.create_task("import", "rows", total_items=4)
    registry.increment_completed(tid, "row-1")
    registry.increment_completed(tid)

    task = registry.get_task(tid)
    assert task.current_item == "row-1"
    assert task.completed_items == 2
    assert task.progress == 50


def test_increment_without_total_leaves_progress_alone(registry: TaskRegistry) -> None:
    tid = registry.create_task("sync", "no total")
    registry.update_task(tid, progress=12)
    registry.increment_completed(tid)
    assert registry.get_task(tid).progress == 12
    assert registry.get_task(tid).completed_items == 1


def test_increments_on_missing_task_are_noops(registry: TaskRegistry, recorder) -> None:
    rec = recorder()
    registry.subscribe(rec)
    registry.increment_completed("missing", "x")
    registry.increment_failed("missing")
    assert len(rec.calls) == 1


def test_reported_progress_does_not_override_item_counters(registry: TaskRegistry) -> None:
    tid = registry.create_task("import", "rows", total_items=10)
    registry.mark_running(tid)
    registry.increment_completed(tid)

    report = ProgressReporter(registry, tid)
    report(90, "almost there")
    task = registry.get_task(tid)
    assert task.progress == 10
    assert task.message == "almost there"

    registry.update_task(tid, progress=55)
    assert registry.get_task(tid).progress == 10

    registry.finish_task(tid, TaskStatus.COMPLETED)
    assert registry.get_task(tid).progress == 100
