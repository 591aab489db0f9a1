"""
Buffered, retrying writer between the engine and the execution store
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

from ..models.execution import Execution
from ..exceptions import ExecutionFinalizedError
from ..integrations.event_bus import EventBus, STORE_WRITE_FAILED_TOPIC
from ..monitoring import MetricsRecorder, STORE_WRITE_FAILURES
from .repository import ExecutionStore


logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    execution_id: str
    patch: Optional[Dict[str, Any]] = None
    snapshot: Optional[Execution] = None  # set for creates
    final: bool = False

    @property
    def operation(self) -> str:
        return "create" if self.snapshot is not None else "update"


class ExecutionRecorder:
    """
    Applies execution writes in order on a background task

    Callers enqueue and return immediately, so node execution never waits on
    store latency. Failed writes are retried with exponential backoff; a
    write that still fails is logged, counted and, for final status writes,
    published on the event bus.
    """

    def __init__(
        self,
        store: ExecutionStore,
        retry_attempts: int = 5,
        retry_delay: float = 0.2,
        metrics: Optional[MetricsRecorder] = None,
        event_bus: Optional[EventBus] = None
    ):
        self.store = store
        self.retry_attempts = max(retry_attempts, 1)
        self.retry_delay = retry_delay
        self.metrics = metrics or MetricsRecorder()
        self.event_bus = event_bus
        self._queue: "asyncio.Queue[Optional[PendingWrite]]" = asyncio.Queue()
        self._pending: Dict[str, int] = {}
        self._drained = asyncio.Condition()
        self._task: Optional[asyncio.Task] = None
        self.failed_writes = 0

    async def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._writer_loop())

    async def stop(self):
        """Flush queued writes and stop the writer"""
        if self._task is None:
            return
        await self._queue.put(None)
        await self._task
        self._task = None

    def record_create(self, execution: Execution):
        snapshot = Execution.from_dict(execution.to_dict())
        self._enqueue(PendingWrite(execution_id=execution.id, snapshot=snapshot))

    def record_update(self, execution_id: str, patch: Dict[str, Any], final: bool = False):
        self._enqueue(PendingWrite(execution_id=execution_id, patch=patch, final=final))

    def _enqueue(self, write: PendingWrite):
        self._pending[write.execution_id] = self._pending.get(write.execution_id, 0) + 1
        self._queue.put_nowait(write)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    async def flush(self):
        """Wait until every queued write has been handled"""
        await self._queue.join()

    async def drain(self, execution_id: str):
        """Wait until the writes queued for one execution have been handled"""
        async with self._drained:
            await self._drained.wait_for(lambda: self._pending.get(execution_id, 0) == 0)
            self._pending.pop(execution_id, None)

    async def _writer_loop(self):
        while True:
            write = await self._queue.get()
            try:
                if write is None:
                    break
                await self._apply(write)
            finally:
                self._queue.task_done()
                if write is not None:
                    async with self._drained:
                        self._pending[write.execution_id] -= 1
                        self._drained.notify_all()

    async def _apply(self, write: PendingWrite):
        delay = self.retry_delay
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                if write.snapshot is not None:
                    await self.store.create(write.snapshot)
                else:
                    await self.store.update(write.execution_id, write.patch)
                return
            except ExecutionFinalizedError as e:
                # Finalized records reject every further write
                last_error = e
                break
            except Exception as e:
                last_error = e
                if attempt < self.retry_attempts:
                    logger.warning(
                        f"Store {write.operation} for execution {write.execution_id} failed "
                        f"(attempt {attempt}/{self.retry_attempts}): {e}"
                    )
                    await asyncio.sleep(delay)
                    delay *= 2

        await self._report_failure(write, last_error)

    async def _report_failure(self, write: PendingWrite, error: Exception):
        self.failed_writes += 1
        self.metrics.inc(STORE_WRITE_FAILURES, {"operation": write.operation, "final": str(write.final).lower()})

        if not write.final:
            logger.warning(f"Dropping {write.operation} for execution {write.execution_id}: {error}")
            return

        logger.error(
            f"Final status write for execution {write.execution_id} failed: {error}",
            exc_info=error
        )
        if self.event_bus is not None:
            await self.event_bus.publish(STORE_WRITE_FAILED_TOPIC, {
                "executionId": write.execution_id,
                "status": (write.patch or {}).get("status"),
                "error": {"type": type(error).__name__, "message": str(error)},
            })
