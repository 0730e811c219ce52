"""Bounded worker pool for fire-and-forget side effects.

Push dispatch and quiz event emission are submitted here instead of being
spawned as free-running tasks. The queue caps memory use, the fixed worker
count caps concurrency, and every failure is logged with the job name.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from duet.core.settings import settings

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class OutboundQueue:
    """Queue of named async jobs drained by a fixed set of workers."""

    def __init__(self, maxsize: int | None = None, workers: int | None = None) -> None:
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.outbound_queue_size
        )
        self._worker_count = max(1, workers if workers is not None else settings.outbound_workers)
        self._workers: list[asyncio.Task[None]] = []
        self.dropped = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    async def start(self) -> None:
        """Start the worker tasks."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(index), name=f"outbound-{index}")
            for index in range(self._worker_count)
        ]

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the workers, optionally letting queued jobs finish first."""
        if drain and self.running:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []

    def submit(self, name: str, job: Job) -> bool:
        """Queue ``job`` without waiting. Returns False if the queue is full."""
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Outbound queue full, dropping job %s", name)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def _work(self, index: int) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.exception("Outbound job %s failed on worker %d", name, index)
            finally:
                self._queue.task_done()
