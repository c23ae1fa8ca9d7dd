"""
Bounded event queue drained by a pool of projection workers.

The subscription reader submits decoded events; a full queue suspends the
reader (backpressure) instead of buffering without limit. Each worker applies
one event at a time through ProjectionHandlers.handle(), which is the
per-event failure boundary. Anything that escapes it ends the worker task and
is reported to the supervisor as fatal.

On stop, events still queued are abandoned (no drain); their count is logged.

Usage:
    dispatcher = EventDispatcher(handlers, queue_size=1000, worker_count=4)
    asyncio.create_task(dispatcher.run())
    await dispatcher.submit(event)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from indexer_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_DISPATCH_QUEUE_SIZE, DEFAULT_DISPATCH_WORKERS

if TYPE_CHECKING:
    from chain.events import ChainEvent
    from core.projection_handlers import ProjectionHandlers


class EventDispatcher:
    """Bounded asyncio.Queue plus ``worker_count`` concurrent projection workers."""

    def __init__(
        self,
        handlers: ProjectionHandlers,
        queue_size: int = DEFAULT_DISPATCH_QUEUE_SIZE,
        worker_count: int = DEFAULT_DISPATCH_WORKERS,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self._handlers = handlers
        self._queue: asyncio.Queue[ChainEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = worker_count
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

        self._processed = 0
        self._dropped = 0

        self._logger = setup_module_logger(
            "event_dispatcher", "event_dispatcher.log", module_folder="Dispatcher_Logs"
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def dropped(self) -> int:
        return self._dropped

    async def submit(self, event: ChainEvent) -> None:
        """Enqueue an event; suspends while the queue is full."""
        await self._queue.put(event)

    async def join(self) -> None:
        """Wait until every submitted event has been handled (used by tests)."""
        await self._queue.join()

    async def run(self) -> None:
        """Start the worker pool and wait on it; designed to run as an asyncio.Task."""
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(), name=f"projection_worker_{i}")
            for i in range(self._worker_count)
        ]
        self._logger.info("Dispatcher started with %d workers", self._worker_count)
        try:
            # First worker failure propagates to the supervisor.
            await asyncio.gather(*self._workers)
        finally:
            for worker in self._workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            abandoned = self._queue.qsize()
            if abandoned:
                self._logger.warning(
                    "Dispatcher stopped with %d queued events abandoned", abandoned
                )
            self._logger.info(
                "Dispatcher stopped (processed=%d dropped=%d)", self._processed, self._dropped
            )

    def stop(self) -> None:
        """Stop the pool. In-flight handlers are cancelled, queued events abandoned."""
        self._running = False
        for worker in self._workers:
            if not worker.done():
                worker.cancel()

    async def _worker(self) -> None:
        while self._running:
            event = await self._queue.get()
            try:
                ok = await self._handlers.handle(event)
            finally:
                self._queue.task_done()
            if ok:
                self._processed += 1
            else:
                self._dropped += 1
