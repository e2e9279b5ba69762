# tests/conftest.py

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from bgtasks.tasks.task_registry import TaskRegistry
from bgtasks.tasks.task_scheduler import TaskScheduler


class GatedExecutor:
    """
    Executor fake for scheduler tests.

    - `started` is set when the executor body begins
    - the body blocks until `release()` (or `fail()`) is called
    - calls are counted so tests can assert "never invoked"
    """

    def __init__(self, result: Any = "ok") -> None:
        self.result = result
        self.calls = 0
        self.started = asyncio.Event()
        self._gate = asyncio.Event()
        self._error: BaseException | None = None
        self.report = None

    def release(self) -> None:
        self._gate.set()

    def fail(self, error: BaseException) -> None:
        self._error = error
        self._gate.set()

    async def __call__(self, report) -> Any:
        self.calls += 1
        self.report = report
        self.started.set()
        await self._gate.wait()
        if self._error is not None:
            raise self._error
        return self.result


class Recorder:
    """Listener fake: remembers every argument it was called with."""

    def __init__(self) -> None:
        self.calls: list[Any] = []

    def __call__(self, arg: Any) -> None:
        self.calls.append(arg)

    @property
    def last(self) -> Any:
        return self.calls[-1]


async def _settle(rounds: int = 10) -> None:
    # Let queued callbacks / woken coroutines run.
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture()
def scheduler(registry: TaskRegistry) -> TaskScheduler:
    return TaskScheduler(registry, max_concurrent=2)


@pytest.fixture()
def gated() -> Callable[..., GatedExecutor]:
    return GatedExecutor


@pytest.fixture()
def recorder() -> Callable[[], Recorder]:
    return Recorder


@pytest.fixture()
def settle():
    return _settle


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap.

    A SimpleNamespace keeps tests independent of the process environment.
    """
    return SimpleNamespace(
        app_name="bgtasks-test",
        log_level="DEBUG",
        log_dir=tmp_path / "logs",
        max_concurrent=2,
        marketplace_concurrency=3,
        ai_concurrency=2,
        general_concurrency=5,
    )
