"""Bounded worker pool over an asyncio queue with per-job retry and backoff."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from relay.errors import JobRescheduled
from relay.pipeline.models import Job

logger = logging.getLogger(__name__)

J = TypeVar("J", bound=Job)

Handler = Callable[[J], Awaitable[None]]
ExhaustedHandler = Callable[[J, Exception], Awaitable[None]]
CompletedHandler = Callable[[J], Awaitable[None]]


class JobQueue(Generic[J]):
    def __init__(
        self,
        name: str,
        handler: Handler,
        concurrency: int,
        on_exhausted: ExhaustedHandler | None = None,
        on_completed: CompletedHandler | None = None,
    ):
        self.name = name
        self._handler = handler
        self._concurrency = concurrency
        self._on_exhausted = on_exhausted
        self._on_completed = on_completed
        self._queue: asyncio.Queue[J] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._delayed: set[asyncio.TimerHandle] = set()
        self.stats: Counter[str] = Counter()

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._delayed)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("Queue %s started with %d workers", self.name, self._concurrency)

    async def stop(self) -> None:
        for handle in self._delayed:
            handle.cancel()
        if self._delayed:
            logger.warning("Queue %s dropped %d delayed jobs on stop", self.name, len(self._delayed))
        self._delayed.clear()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    def submit(self, job: J, delay: float = 0.0) -> None:
        if delay <= 0:
            self._queue.put_nowait(job)
            self.stats["submitted"] += 1
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _release() -> None:
            self._delayed.discard(handle)
            self._queue.put_nowait(job)

        handle = loop.call_later(delay, _release)
        self._delayed.add(handle)
        self.stats["submitted"] += 1

    async def join(self, timeout: float | None = None) -> bool:
        """Wait until nothing is queued, delayed or running. Returns False on timeout."""

        async def _wait() -> None:
            while True:
                await self._queue.join()
                if not self._delayed and self._queue.empty():
                    return
                await asyncio.sleep(0.05)

        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            except Exception:
                logger.exception("Queue %s worker %d crashed on %s", self.name, index, job.describe())
            finally:
                self._queue.task_done()

    async def _run(self, job: J) -> None:
        job.attempts_made += 1
        try:
            await self._handler(job)
        except JobRescheduled as e:
            self.stats["rescheduled"] += 1
            logger.info("Queue %s: %s (%s)", self.name, job.describe(), e)
            return
        except Exception as e:
            await self._on_failure(job, e)
            return

        self.stats["completed"] += 1
        if self._on_completed:
            await self._on_completed(job)

    async def _on_failure(self, job: J, error: Exception) -> None:
        retryable = getattr(error, "retryable", True)
        if retryable and not job.exhausted:
            delay = job.retry.delay_for(job.attempts_made)
            self.stats["retried"] += 1
            logger.warning(
                "Queue %s: %s failed (attempt %d/%d), retrying in %.1fs: %s",
                self.name,
                job.describe(),
                job.attempts_made,
                job.retry.max_attempts,
                delay,
                error,
            )
            self.submit(job, delay=delay)
            return

        self.stats["exhausted"] += 1
        logger.error(
            "Queue %s: %s failed after %d attempts%s: %s",
            self.name,
            job.describe(),
            job.attempts_made,
            "" if retryable else " (not retryable)",
            error,
        )
        if self._on_exhausted:
            await self._on_exhausted(job, error)
