"""
Trigger ingestion: webhook, manual and schedule triggers
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from croniter import croniter

from ..exceptions import (
    UnknownWorkflowError, WorkflowDisabledError, EngineOverloadedError, FlowEngineError
)
from ..storage.repository import WorkflowRepository
from .engine import ExecutionEngine


logger = logging.getLogger(__name__)


class TriggerService:
    """Maps external events to new executions"""

    def __init__(self, engine: ExecutionEngine, workflows: WorkflowRepository):
        self.engine = engine
        self.workflows = workflows

    async def on_trigger(self, workflow_id: str, payload: Any = None, mode: str = "webhook") -> str:
        """
        Start a new execution of a stored workflow

        Returns the execution id as soon as the run is handed to the engine;
        the run's outcome is read from the execution status. Every call
        creates exactly one execution.
        """
        record = await self.workflows.get(workflow_id)
        if record is None:
            raise UnknownWorkflowError(workflow_id)
        if not record.enabled:
            raise WorkflowDisabledError(workflow_id)

        limit = self.engine.settings.max_active_executions
        if self.engine.active_count >= limit:
            logger.warning(f"Shedding {mode} trigger for workflow {workflow_id}: {self.engine.active_count} active runs")
            raise EngineOverloadedError(f"Engine is at capacity ({limit} active executions)")

        execution = await self.engine.submit(record.definition, payload, mode=mode)
        logger.info(f"Accepted {mode} trigger for workflow {workflow_id}: execution {execution.id}")
        return execution.id


@dataclass(frozen=True)
class ScheduleSpec:
    """Parsed schedule trigger"""
    interval_seconds: Optional[float] = None
    cron: Optional[str] = None

    @classmethod
    def from_trigger(cls, trigger: Mapping[str, Any]) -> Optional["ScheduleSpec"]:
        if trigger.get("type") != "schedule":
            return None
        if trigger.get("cron"):
            return cls(cron=str(trigger["cron"]))
        if trigger.get("intervalSeconds"):
            return cls(interval_seconds=float(trigger["intervalSeconds"]))
        return None

    def next_after(self, moment: datetime) -> datetime:
        if self.cron is not None:
            return croniter(self.cron, moment).get_next(datetime)
        return moment + timedelta(seconds=self.interval_seconds)


class ScheduleRunner:
    """Fires schedule triggers of enabled workflows"""

    def __init__(
        self,
        triggers: TriggerService,
        workflows: WorkflowRepository,
        tick_interval: float = 1.0
    ):
        self.triggers = triggers
        self.workflows = workflows
        self.tick_interval = tick_interval
        self._next_runs: Dict[Tuple[str, int], datetime] = {}
        self._specs: Dict[Tuple[str, int], ScheduleSpec] = {}
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop())
            logger.info("Schedule runner started")

    async def stop(self):
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Schedule runner stopped")

    async def _loop(self):
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Schedule tick failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.tick_interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self, now: Optional[datetime] = None) -> int:
        """Fire every due schedule; returns the number of executions started"""
        now = now or datetime.now(timezone.utc)
        seen = set()
        fired = 0

        offset = 0
        while True:
            page = await self.workflows.list(offset=offset, limit=100)
            for record in page.items:
                if not record.enabled:
                    continue
                for index, trigger in enumerate(record.definition.triggers):
                    spec = ScheduleSpec.from_trigger(trigger)
                    if spec is None:
                        continue
                    key = (record.id, index)
                    seen.add(key)
                    if self._specs.get(key) != spec:
                        # New or changed schedule: first run is one period away
                        self._specs[key] = spec
                        self._next_runs[key] = spec.next_after(now)
                        continue
                    if now < self._next_runs[key]:
                        continue
                    self._next_runs[key] = spec.next_after(now)
                    if await self._fire(record.id, index, now):
                        fired += 1
            offset += len(page.items)
            if not page.items or not page.has_more:
                break

        for key in [k for k in self._specs if k not in seen]:
            self._specs.pop(key)
            self._next_runs.pop(key, None)
        return fired

    async def _fire(self, workflow_id: str, index: int, now: datetime) -> bool:
        payload = {"timestamp": now.isoformat(), "triggerIndex": index}
        try:
            await self.triggers.on_trigger(workflow_id, payload, mode="schedule")
            return True
        except FlowEngineError as e:
            logger.warning(f"Scheduled trigger for workflow {workflow_id} not accepted: {e}")
            return False

    def next_run(self, workflow_id: str, index: int = 0) -> Optional[datetime]:
        return self._next_runs.get((workflow_id, index))
