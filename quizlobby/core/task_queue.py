from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Hashable

from quizlobby.core.logging import get_logger

logger = get_logger(__name__)


JobCallable = Callable[[], Awaitable[None]]


class BackgroundQueue:
    """In-process async job queue, at most one waiting job per key.

    Question generation is keyed by lobby id, so a host hammering "retry"
    cannot stack several generations for the same lobby. The key is
    released once a worker picks the job up, so the job itself may re-queue.
    """

    def __init__(self, *, concurrency: int = 2) -> None:
        self.concurrency = max(1, int(concurrency))
        self._queue: asyncio.Queue[tuple[Hashable, JobCallable]] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._waiting: set[Hashable] = set()

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def is_waiting(self, key: Hashable) -> bool:
        return key in self._waiting

    def enqueue(self, key: Hashable, fn: JobCallable) -> bool:
        """Queue `fn` under `key`; returns False if that key is already waiting."""
        if key in self._waiting:
            logger.info("Job %r already waiting; not queued again", key)
            return False
        self._waiting.add(key)
        self._queue.put_nowait((key, fn))
        return True

    async def _run(self, worker: int) -> None:
        while True:
            key, job = await self._queue.get()
            self._waiting.discard(key)
            try:
                await job()
            except Exception:  # noqa: BLE001
                logger.exception("Job %r failed on worker %d", key, worker)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [asyncio.create_task(self._run(i)) for i in range(self.concurrency)]

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        await self._queue.join()
        workers, self._workers = self._workers, []
        for t in workers:
            t.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
