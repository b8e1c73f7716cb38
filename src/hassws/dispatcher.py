"""Fan-out of state-change events to listeners.

Listener callbacks run on a WorkerPool that bounds how many run at once and
can be shut down deterministically. With ordered delivery, events for the
same entity are handed to listeners strictly in arrival order.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any

import structlog

from hassws.listeners import ListenerRegistration, ListenerRegistry, should_fire
from hassws.models import StateChangeEvent

logger = structlog.get_logger(__name__)


async def invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
    """Call a sync or async callback, logging instead of raising on failure."""
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(
            "Listener callback failed", callback=getattr(callback, "__qualname__", repr(callback))
        )


class WorkerPool:
    """Runs coroutines as tasks with at most ``max_workers`` active at once."""

    def __init__(self, max_workers: int = 64) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._max_workers = max_workers
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def active(self) -> int:
        """Number of spawned tasks not yet finished (running or queued)."""
        return sum(1 for task in self._tasks if not task.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Coroutine[Any, Any, Any], delay: float = 0) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the pool.

        With ``delay`` the task waits that many seconds before taking a
        worker slot, so a pending delay never holds up other work.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("worker pool is shut down")
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_workers)

        task = asyncio.create_task(self._run(self._semaphore, coro, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _run(
        semaphore: asyncio.Semaphore, coro: Coroutine[Any, Any, Any], delay: float
    ) -> Any:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            coro.close()
            raise
        async with semaphore:
            return await coro

    async def join(self) -> None:
        """Wait until every spawned task has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self, cancel: bool = True) -> None:
        """Stop accepting work, then cancel (or drain) outstanding tasks."""
        self._closed = True
        if cancel:
            for task in list(self._tasks):
                task.cancel()
        await self.join()

    def reopen(self) -> None:
        self._closed = False


class Dispatcher:
    """Delivers StateChangeEvents to matching listeners."""

    def __init__(
        self,
        registry: ListenerRegistry,
        pool: WorkerPool,
        ordered: bool = True,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._ordered = ordered
        self._queues: dict[str, deque[StateChangeEvent]] = {}
        self._drains: dict[str, asyncio.Task[None]] = {}
        self._unordered: set[asyncio.Task[None]] = set()

    @property
    def ordered(self) -> bool:
        return self._ordered

    def dispatch(self, event: StateChangeEvent) -> None:
        """Schedule delivery of ``event``; returns without waiting for listeners."""
        if self._pool.closed:
            logger.debug("Dropping event, dispatcher shut down", entity_id=event.entity_id)
            return

        if not self._ordered:
            task = asyncio.create_task(self._deliver(event))
            self._unordered.add(task)
            task.add_done_callback(self._unordered.discard)
            return

        self._queues.setdefault(event.entity_id, deque()).append(event)
        if event.entity_id not in self._drains:
            self._drains[event.entity_id] = asyncio.create_task(self._drain(event.entity_id))

    async def _drain(self, entity_id: str) -> None:
        try:
            while True:
                queue = self._queues.get(entity_id)
                if not queue:
                    return
                await self._deliver(queue.popleft())
        finally:
            self._queues.pop(entity_id, None)
            self._drains.pop(entity_id, None)

    async def _deliver(self, event: StateChangeEvent) -> None:
        """Hand ``event`` to every matching listener.

        Conditions are checked here, in arrival order. Listeners with a
        ``for_duration`` get their own delayed task which is not awaited, so
        they never hold back later events for the same entity.
        """
        immediate = []
        for listener in self._registry.match(event.entity_id):
            if not should_fire(event, listener.options):
                continue
            delay = listener.options.for_duration
            try:
                task = self._pool.spawn(self._invoke(listener, event), delay=delay)
            except RuntimeError:
                return
            if delay <= 0:
                immediate.append(task)
        if immediate:
            await asyncio.gather(*immediate, return_exceptions=True)

    async def _invoke(self, listener: ListenerRegistration, event: StateChangeEvent) -> None:
        await invoke_callback(listener.callback, event)
        logger.debug(
            "Triggered listener", entity_id=event.entity_id, kind=listener.matcher.kind.value
        )

    async def join(self) -> None:
        """Wait until all queued events have been delivered."""
        while True:
            pending = [t for t in (*self._drains.values(), *self._unordered) if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        await self._pool.join()

    async def shutdown(self) -> None:
        """Cancel queued deliveries and running listeners."""
        tasks = [*self._drains.values(), *self._unordered]
        for task in tasks:
            task.cancel()
        await self._pool.shutdown()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._drains.clear()
        self._unordered.clear()
        self._queues.clear()
