# src/bgtasks/tasks/request_queue.py

"""
Priority request queue.

A lighter limiter than TaskScheduler for plain coroutines that do not need a task
record (marketplace API calls, AI requests). Bounded parallelism, higher priority
first, FIFO among equal priorities, and de-duplication of waiting requests by id.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueueClearedError(Exception):
    """Raised to callers whose request was still waiting when the queue was cleared."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Queue cleared before request {request_id} started")
        self.request_id = request_id


@dataclass(slots=True)
class _Request:
    request_id: str
    execute: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    priority: int = 0
    seq: int = 0


class RequestQueue:
    def __init__(self, max_concurrent: int = 3, *, name: str = "requests") -> None:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.name = name
        self.max_concurrent = int(max_concurrent)
        self._heap: list[tuple[int, int, _Request]] = []
        self._waiting: dict[str, _Request] = {}
        self._active = 0
        self._seq = itertools.count()
        self._workers: set[asyncio.Task[None]] = set()

    @property
    def queue_length(self) -> int:
        return len(self._waiting)

    @property
    def active_count(self) -> int:
        return self._active

    async def add(
        self,
        execute: Callable[[], Awaitable[T]],
        *,
        request_id: str | None = None,
        priority: int = 0,
    ) -> T:
        """
        Queue execute() and wait for its result.

        If a request with the same id is still waiting, the new caller shares that
        request's outcome instead of queueing a second copy.
        """
        rid = request_id or uuid.uuid4().hex

        existing = self._waiting.get(rid)
        if existing is not None:
            logger.debug("%s: request %s already queued; sharing result", self.name, rid)
            return await asyncio.shield(existing.future)

        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_mark_retrieved)
        req = _Request(request_id=rid, execute=execute, future=fut, priority=priority, seq=next(self._seq))
        self._waiting[rid] = req
        heapq.heappush(self._heap, (-priority, req.seq, req))

        self._pump()
        return await asyncio.shield(fut)

    def clear(self) -> int:
        """Fail every waiting request with QueueClearedError. Running ones are left alone."""
        pending = list(self._waiting.values())
        self._waiting.clear()
        self._heap.clear()
        for req in pending:
            if not req.future.done():
                req.future.set_exception(QueueClearedError(req.request_id))
        if pending:
            logger.info("%s: cleared %d waiting requests", self.name, len(pending))
        return len(pending)

    def _pump(self) -> None:
        while self._heap and self._active < self.max_concurrent:
            _, _, req = heapq.heappop(self._heap)
            if self._waiting.get(req.request_id) is req:
                del self._waiting[req.request_id]
            if req.future.done():
                continue
            self._active += 1
            worker = asyncio.get_running_loop().create_task(self._execute(req))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _execute(self, req: _Request) -> None:
        try:
            result = await req.execute()
        except asyncio.CancelledError:
            if not req.future.done():
                req.future.cancel()
            raise
        except Exception as exc:
            logger.debug("%s: request %s failed: %r", self.name, req.request_id, exc)
            if not req.future.done():
                req.future.set_exception(exc)
        else:
            if not req.future.done():
                req.future.set_result(result)
        finally:
            self._active -= 1
            self._pump()


def _mark_retrieved(fut: asyncio.Future[Any]) -> None:
    # Callers await through shield(); touch the exception so an abandoned request
    # does not log "exception was never retrieved".
    if not fut.cancelled():
        fut.exception()
