# src/bgtasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduler.

Executors and listeners are supplied by callers (AI calls, spreadsheet imports,
marketplace syncs). The core only depends on these shapes.
"""

from typing import Any, Awaitable, Callable, Protocol, TypeVar

T_co = TypeVar("T_co", covariant=True)

# Listeners may return None or an awaitable (coroutine functions are accepted).
TaskListListener = Callable[[list[Any]], Any]
CompletionCallback = Callable[[Any], Any]
Unsubscribe = Callable[[], None]


class ProgressCallback(Protocol):
    """What an executor receives: report(progress, message=None)."""

    def __call__(self, progress: int, message: str | None = None) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Executor(Protocol[T_co]):
    """A unit of work. Raises to fail the task; returns the result on success."""

    def __call__(self, report: ProgressCallback) -> Awaitable[T_co]: ...
