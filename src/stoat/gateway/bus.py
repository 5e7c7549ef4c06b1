"""In-process event bus: per-server FIFO between the resource layer and the dispatcher."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from stoat.gateway.events import DomainEvent

log = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class BusClosed(RuntimeError):
    pass


class EventBus:
    """Delivers events to a single handler, in publish order per server.

    Each server gets its own bounded queue and, while the queue is non-empty,
    one drain task.  Events for different servers are handled concurrently and
    carry no relative order.  ``publish`` waits while a server's queue is full,
    so a slow handler slows producers down instead of losing events.
    """

    def __init__(self, handler: Handler | None = None, *, backlog: int = 10000) -> None:
        self._handler = handler
        self._backlog = backlog
        self._queues: dict[int, asyncio.Queue[DomainEvent]] = {}
        self._workers: dict[int, asyncio.Task] = {}
        self._forgotten: set[int] = set()
        self._closed = False

    def attach(self, handler: Handler) -> None:
        self._handler = handler

    async def publish(self, event: DomainEvent) -> None:
        if self._closed:
            raise BusClosed("event bus is closed")
        queue = self._queues.get(event.server_id)
        if queue is None:
            queue = self._queues[event.server_id] = asyncio.Queue(maxsize=self._backlog)
        await queue.put(event)
        self._ensure_worker(event.server_id)

    def _ensure_worker(self, server_id: int) -> None:
        if server_id in self._workers:
            return
        self._workers[server_id] = asyncio.create_task(
            self._drain(server_id), name=f"bus-drain-{server_id}"
        )

    async def _drain(self, server_id: int) -> None:
        queue = self._queues[server_id]
        while True:
            try:
                event = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                if self._handler is not None:
                    await self._handler(event)
            except Exception:
                log.exception(
                    "Bus: handler failed for %s.%s on server %d",
                    event.entity_kind, event.operation, server_id,
                )
            finally:
                queue.task_done()
        # No await between the empty check and here; a publisher woken from a
        # full queue after this point starts a fresh worker on the same queue.
        del self._workers[server_id]
        if server_id in self._forgotten and queue.empty():
            self._forgotten.discard(server_id)
            del self._queues[server_id]

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        while any(not q.empty() for q in self._queues.values()) or self._workers:
            await asyncio.gather(*(q.join() for q in list(self._queues.values())))
            await asyncio.sleep(0)

    def forget(self, server_id: int) -> None:
        """Drop the queue of a deleted server once it runs idle."""
        if server_id not in self._workers:
            self._queues.pop(server_id, None)
        else:
            self._forgotten.add(server_id)

    def pending(self, server_id: int) -> int:
        queue = self._queues.get(server_id)
        return queue.qsize() if queue is not None else 0

    async def close(self) -> None:
        self._closed = True
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
