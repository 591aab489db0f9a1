"""
Storage repository interfaces and in-memory implementations
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Generic, TypeVar

from ..models.workflow import WorkflowDefinition
from ..models.execution import Execution, ExecutionStatus, utcnow, format_timestamp
from ..exceptions import (
    StoreWriteError, ExecutionFinalizedError, ExecutionNotFoundError, UnknownWorkflowError
)


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of a listing"""
    items: List[T]
    total: int
    offset: int = 0
    limit: int = 20

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass
class WorkflowRecord:
    """A stored workflow definition and its trigger switch"""
    definition: WorkflowDefinition
    enabled: bool = True
    created_at: Any = field(default_factory=utcnow)
    updated_at: Any = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return self.definition.id

    def to_dict(self) -> Dict[str, Any]:
        data = self.definition.to_dict()
        data.update({
            "enabled": self.enabled,
            "warnings": [warning.to_dict() for warning in self.definition.warnings],
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        })
        return data


class WorkflowRepository(ABC):
    """Workflow definition repository"""

    @abstractmethod
    async def save(self, definition: WorkflowDefinition, enabled: Optional[bool] = None) -> WorkflowRecord:
        """Insert or replace a definition; enabled=None keeps the current flag"""
        pass

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        pass

    @abstractmethod
    async def list(self, offset: int = 0, limit: int = 100) -> Page[WorkflowRecord]:
        pass

    @abstractmethod
    async def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowRecord:
        """Toggle triggering; raises UnknownWorkflowError"""
        pass

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        pass


class ExecutionStore(ABC):
    """
    Durable record of executions

    Holds snapshots, never the live Execution object. Patches use the wire
    field names of Execution.to_dict(); top-level fields overwrite while
    "nodeRuns" merges per node id.
    """

    @abstractmethod
    async def create(self, execution: Execution) -> str:
        pass

    @abstractmethod
    async def update(self, execution_id: str, patch: Dict[str, Any]) -> Execution:
        """Apply a patch; raises ExecutionFinalizedError on terminal executions"""
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Execution:
        """Raises ExecutionNotFoundError"""
        pass

    @abstractmethod
    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Page[Execution]:
        """Newest first"""
        pass


class InMemoryWorkflowRepository(WorkflowRepository):
    """In-memory workflow repository"""

    def __init__(self):
        self.records: Dict[str, WorkflowRecord] = {}

    async def save(self, definition: WorkflowDefinition, enabled: Optional[bool] = None) -> WorkflowRecord:
        existing = self.records.get(definition.id)
        now = utcnow()
        record = WorkflowRecord(
            definition=definition,
            enabled=enabled if enabled is not None else (existing.enabled if existing else True),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.records[definition.id] = record
        return record

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        return self.records.get(workflow_id)

    async def list(self, offset: int = 0, limit: int = 100) -> Page[WorkflowRecord]:
        records = sorted(self.records.values(), key=lambda r: r.created_at)
        return Page(items=records[offset:offset + limit], total=len(records), offset=offset, limit=limit)

    async def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowRecord:
        record = self.records.get(workflow_id)
        if record is None:
            raise UnknownWorkflowError(workflow_id)
        record.enabled = enabled
        record.updated_at = utcnow()
        return record

    async def delete(self, workflow_id: str) -> bool:
        return self.records.pop(workflow_id, None) is not None


class InMemoryExecutionStore(ExecutionStore):
    """In-memory execution store"""

    def __init__(self):
        self.snapshots: Dict[str, Dict[str, Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, execution_id: str) -> asyncio.Lock:
        return self._locks.setdefault(execution_id, asyncio.Lock())

    async def create(self, execution: Execution) -> str:
        async with self._lock_for(execution.id):
            if execution.id in self.snapshots:
                raise StoreWriteError(f"Execution already exists: {execution.id}")
            self.snapshots[execution.id] = execution.to_dict()
        return execution.id

    async def update(self, execution_id: str, patch: Dict[str, Any]) -> Execution:
        async with self._lock_for(execution_id):
            snapshot = self.snapshots.get(execution_id)
            if snapshot is None:
                raise ExecutionNotFoundError(execution_id)
            execution = Execution.from_dict(snapshot)
            if execution.is_terminal_state():
                raise ExecutionFinalizedError(execution_id)
            execution.apply_patch(patch)
            self.snapshots[execution_id] = execution.to_dict()
            return execution

    async def get(self, execution_id: str) -> Execution:
        snapshot = self.snapshots.get(execution_id)
        if snapshot is None:
            raise ExecutionNotFoundError(execution_id)
        return Execution.from_dict(snapshot)

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 20
    ) -> Page[Execution]:
        executions = [Execution.from_dict(snapshot) for snapshot in self.snapshots.values()]
        if workflow_id is not None:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        if status is not None:
            executions = [e for e in executions if e.status == status]
        executions.sort(key=lambda e: e.created_at, reverse=True)
        return Page(
            items=executions[offset:offset + limit],
            total=len(executions),
            offset=offset,
            limit=limit,
        )
