# tests/test_task_api.py

from __future__ import annotations

import asyncio

import pytest

from bgtasks.tasks.task_api import partition_by_status, run_batch, start_task
from bgtasks.tasks.task_models import TaskCancelledError, TaskStatus
from bgtasks.tasks.task_scheduler import TaskScheduler


@pytest.mark.asyncio
async def test_start_task_returns_immediately(scheduler: TaskScheduler, gated, settle) -> None:
    executor = gated("image-url")
    task_id, handle = start_task(scheduler, "image", "Generating image", executor, payload={"sku": "A1"})

    assert scheduler.get_task(task_id).payload == {"sku": "A1"}
    await settle()
    assert scheduler.get_task(task_id).status == TaskStatus.RUNNING

    executor.release()
    assert await handle == "image-url"
    assert scheduler.get_task(task_id).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_start_task_cancelled_before_start(gated, settle) -> None:
    scheduler = TaskScheduler(max_concurrent=1)
    blocker = gated()
    _, blocker_handle = start_task(scheduler, "t", "blocker", blocker)
    queued_id, queued_handle = start_task(scheduler, "t", "queued", gated())
    await settle()

    scheduler.cancel_task(queued_id)
    with pytest.raises(TaskCancelledError):
        await queued_handle

    blocker.release()
    await blocker_handle


@pytest.mark.asyncio
async def test_run_batch_counts_successes_and_failures(scheduler: TaskScheduler) -> None:
    rows = [{"sku": f"S{i}", "ok": i % 4 != 3} for i in range(8)]

    async def import_row(row) -> None:
        await asyncio.sleep(0)
        if not row["ok"]:
            raise ValueError(f"bad row {row['sku']}")

    result = await run_batch(scheduler, "import", "Importing", rows, import_row, label=lambda r: r["sku"])

    assert (result.completed, result.failed, result.cancelled) == (6, 2, False)
    task = scheduler.get_task(result.task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.total_items == 8
    assert task.completed_items == 6
    assert task.failed_items == 2
    assert task.current_item == "S6"
    assert task.progress == 100


@pytest.mark.asyncio
async def test_run_batch_stops_when_cancelled(scheduler: TaskScheduler) -> None:
    seen: list[int] = []
    holder: dict[str, str] = {}

    def remember(tasks) -> None:
        if tasks and "id" not in holder:
            holder["id"] = tasks[0].id

    scheduler.subscribe(remember)

    async def handle(item: int) -> None:
        seen.append(item)
        if item == 2:
            scheduler.cancel_task(holder["id"])

    result = await run_batch(scheduler, "import", "rows", list(range(10)), handle)

    assert result.cancelled is True
    assert seen == [0, 1, 2]
    assert result.completed == 3
    task = scheduler.get_task(result.task_id)
    assert task.status == TaskStatus.CANCELLED
    assert task.progress == 30


def test_partition_by_status(scheduler: TaskScheduler) -> None:
    a = scheduler.create_task("t", "a")
    b = scheduler.create_task("t", "b")
    scheduler.cancel_task(b)

    groups = partition_by_status(scheduler.get_all_tasks())

    assert set(groups) == set(TaskStatus)
    assert [t.id for t in groups[TaskStatus.PENDING]] == [a]
    assert [t.id for t in groups[TaskStatus.CANCELLED]] == [b]
    assert groups[TaskStatus.RUNNING] == []
