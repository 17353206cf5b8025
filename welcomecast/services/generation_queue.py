"""
welcomecast.services.generation_queue — Bounded Background Generation
======================================================================

Webhooks and page visits must answer immediately, but a welcome takes
seconds (vendor synthesis + delivery).  Requests drop a job here and
return; a fixed pool of worker tasks drains the queue.

Guarantees:
    * At most ``maxsize`` jobs wait; beyond that :class:`GenerationQueueFull`.
    * A (creator, customer) pair is in flight at most once — a second
      submit while the first is queued or running raises
      :class:`GenerationAlreadyQueued`.
    * A started job runs to completion; :meth:`stop` waits for the queue to
      drain before cancelling idle workers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from welcomecast.exceptions import GenerationAlreadyQueued, GenerationQueueFull

logger = logging.getLogger(__name__)

# (creator_id, customer_id) → awaitable run
GenerationRunner = Callable[[str, str], Awaitable[object]]

JobKey = tuple[str, str]


class GenerationQueue:
    """asyncio.Queue with a worker pool and per-pair deduplication."""

    def __init__(self, runner: GenerationRunner, *, workers: int = 2, maxsize: int = 100) -> None:
        self.runner = runner
        self.workers = max(1, workers)
        self._queue: asyncio.Queue[JobKey] = asyncio.Queue(maxsize=maxsize)
        self._in_flight: set[JobKey] = set()
        self._tasks: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def is_in_flight(self, creator_id: str, customer_id: str) -> bool:
        return (creator_id, customer_id) in self._in_flight

    def submit(self, creator_id: str, customer_id: str) -> None:
        """Enqueue a generation without waiting for it."""
        key = (creator_id, customer_id)
        if key in self._in_flight:
            raise GenerationAlreadyQueued(
                f"A welcome for customer {customer_id} is already being generated"
            )
        try:
            self._queue.put_nowait(key)
        except asyncio.QueueFull as exc:
            raise GenerationQueueFull(
                f"Generation queue is full ({self._queue.maxsize} waiting)"
            ) from exc
        self._in_flight.add(key)
        logger.debug("Queued generation for %s/%s (%d waiting)", *key, self.pending)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            try:
                await self.runner(*key)
            except Exception:
                logger.exception("Generation for %s/%s failed", *key)
            finally:
                self._in_flight.discard(key)
                self._queue.task_done()

    def start(self) -> None:
        """Spawn the worker tasks on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"welcome-generation-{i}")
            for i in range(self.workers)
        ]
        logger.info("Generation queue started with %d worker(s)", self.workers)

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        """Drain outstanding jobs, then cancel the workers."""
        if not self._tasks:
            return
        await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Generation queue stopped")
