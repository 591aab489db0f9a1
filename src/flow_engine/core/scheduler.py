"""Bounded worker pool shared by all executions."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ..exceptions import CancellationRequested, FlowEngineError


logger = logging.getLogger(__name__)


class SchedulerError(FlowEngineError):
    """Worker pool misuse"""
    pass


class JobNotStarted(CancellationRequested):
    """Job was still queued when its run was cancelled"""
    pass


@dataclass
class ScheduledJob:
    """One node attempt waiting for a worker"""
    func: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    cancel_event: Optional[asyncio.Event] = None
    label: str = ""
    enqueued_at: float = field(default=0.0)


class WorkerPool:
    """FIFO queue drained by a fixed number of worker tasks."""

    def __init__(self, size: int = 8) -> None:
        if size <= 0:
            raise SchedulerError("Worker pool size must be positive")
        self.size = size
        self._queue: "asyncio.Queue[Optional[ScheduledJob]]" = asyncio.Queue()
        self._workers: List[asyncio.Task[None]] = []
        self._running = False
        self._busy = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> int:
        """Workers currently executing a job"""
        return self._busy

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for index in range(self.size):
            self._workers.append(asyncio.create_task(self._worker_loop(index)))
        logger.info(f"Worker pool started with {self.size} workers")

    def submit(
        self,
        func: Callable[[], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event] = None,
        label: str = ""
    ) -> asyncio.Future:
        """Queue a job; the returned future resolves with its result"""
        if not self._running:
            raise SchedulerError("Worker pool must be started before submitting jobs")
        loop = asyncio.get_running_loop()
        job = ScheduledJob(
            func=func,
            future=loop.create_future(),
            cancel_event=cancel_event,
            label=label,
            enqueued_at=loop.time(),
        )
        self._queue.put_nowait(job)
        return job.future

    async def stop(self) -> None:
        """Drain queued jobs, then stop the workers"""
        if not self._running:
            return
        self._running = False
        for _ in self._workers:
            await self._queue.put(None)
        await asyncio.gather(*self._workers)
        self._workers.clear()
        logger.info("Worker pool stopped")

    async def wait_until_idle(self) -> None:
        await self._queue.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            if job is None:  # sentinel for shutdown
                self._queue.task_done()
                break
            try:
                await self._run_job(job)
            finally:
                self._queue.task_done()

    async def _run_job(self, job: ScheduledJob) -> None:
        if job.future.done():
            return
        if job.cancel_event is not None and job.cancel_event.is_set():
            # Queued but not started: never start it
            job.future.set_exception(JobNotStarted(f"Job '{job.label}' cancelled before start"))
            return

        self._busy += 1
        try:
            result = await job.func()
        except asyncio.CancelledError:
            if not job.future.done():
                job.future.cancel()
            raise
        except Exception as e:
            if not job.future.done():
                job.future.set_exception(e)
        else:
            if not job.future.done():
                job.future.set_result(result)
        finally:
            self._busy -= 1
