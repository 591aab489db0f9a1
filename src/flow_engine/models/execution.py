"""
Workflow execution models
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4

from .workflow import Item


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 rendering used on every wire format"""
    return value.isoformat() if value else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ExecutionStatus(Enum):
    """Run-level status"""
    NEW = "new"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELED)


class NodeRunStatus(Enum):
    """Per-node status inside one execution"""
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeRunStatus.SUCCEEDED, NodeRunStatus.FAILED, NodeRunStatus.SKIPPED)


def error_detail(error: BaseException) -> Dict[str, Any]:
    detail = {
        "type": type(error).__name__,
        "message": str(error),
        "timestamp": utcnow().isoformat(),
    }
    cause = getattr(error, "cause", None)
    if cause is not None:
        detail["cause"] = type(cause).__name__
    return detail


@dataclass
class NodeRunResult:
    """Outcome of one node inside one execution"""
    node_id: str
    status: NodeRunStatus = NodeRunStatus.PENDING
    outputs: List[List[Item]] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    attempts: int = 0
    input_count: int = 0
    skip_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration: Optional[float] = None

    def start(self):
        """Begin an attempt"""
        self.status = NodeRunStatus.RUNNING
        if self.started_at is None:
            self.started_at = utcnow()

    def wait(self):
        """Suspend on an external event"""
        self.status = NodeRunStatus.WAITING

    def succeed(self, outputs: List[List[Item]]):
        self.status = NodeRunStatus.SUCCEEDED
        self.outputs = outputs
        self.error = None
        self._finish()

    def fail(self, error: BaseException):
        self.status = NodeRunStatus.FAILED
        self.outputs = []
        self.error = error_detail(error)
        self._finish()

    def skip(self, reason: str):
        self.status = NodeRunStatus.SKIPPED
        self.skip_reason = reason
        self._finish()

    def _finish(self):
        self.finished_at = utcnow()
        if self.started_at:
            self.duration = (self.finished_at - self.started_at).total_seconds()

    @property
    def output_count(self) -> int:
        return sum(len(slot) for slot in self.outputs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "status": self.status.value,
            "outputs": [[item.to_dict() for item in slot] for slot in self.outputs],
            "error": self.error,
            "attempts": self.attempts,
            "inputCount": self.input_count,
            "skipReason": self.skip_reason,
            "startedAt": format_timestamp(self.started_at),
            "finishedAt": format_timestamp(self.finished_at),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeRunResult":
        return cls(
            node_id=data["nodeId"],
            status=NodeRunStatus(data.get("status", "pending")),
            outputs=[[Item.from_dict(item) for item in slot] for slot in data.get("outputs", [])],
            error=data.get("error"),
            attempts=data.get("attempts", 0),
            input_count=data.get("inputCount", 0),
            skip_reason=data.get("skipReason"),
            started_at=parse_timestamp(data.get("startedAt")),
            finished_at=parse_timestamp(data.get("finishedAt")),
            duration=data.get("duration"),
        )


@dataclass
class Execution:
    """One run of a workflow from trigger to terminal status"""
    id: str = field(default_factory=lambda: str(uuid4()))
    workflow_id: str = ""
    workflow_version: str = ""
    mode: str = "manual"
    status: ExecutionStatus = ExecutionStatus.NEW
    node_runs: Dict[str, NodeRunResult] = field(default_factory=dict)
    trigger_items: List[Item] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def start(self):
        self.status = ExecutionStatus.RUNNING
        self.started_at = utcnow()
        self.updated_at = self.started_at

    def wait(self):
        self.status = ExecutionStatus.WAITING
        self.updated_at = utcnow()

    def resume(self):
        self.status = ExecutionStatus.RUNNING
        self.updated_at = utcnow()

    def finish(self, status: ExecutionStatus, error: Optional[Dict[str, Any]] = None):
        """Move to a terminal status"""
        self.status = status
        if error is not None:
            self.error = error
        self.finished_at = utcnow()
        self.updated_at = self.finished_at

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def is_terminal_state(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "workflowVersion": self.workflow_version,
            "mode": self.mode,
            "status": self.status.value,
            "nodeRuns": {node_id: run.to_dict() for node_id, run in self.node_runs.items()},
            "triggerItems": [item.to_dict() for item in self.trigger_items],
            "error": self.error,
            "startedAt": format_timestamp(self.started_at),
            "finishedAt": format_timestamp(self.finished_at),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Execution":
        return cls(
            id=data["id"],
            workflow_id=data.get("workflowId", ""),
            workflow_version=data.get("workflowVersion", ""),
            mode=data.get("mode", "manual"),
            status=ExecutionStatus(data.get("status", "new")),
            node_runs={
                node_id: NodeRunResult.from_dict(run)
                for node_id, run in data.get("nodeRuns", {}).items()
            },
            trigger_items=[Item.from_dict(item) for item in data.get("triggerItems", [])],
            error=data.get("error"),
            started_at=parse_timestamp(data.get("startedAt")),
            finished_at=parse_timestamp(data.get("finishedAt")),
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            updated_at=parse_timestamp(data.get("updatedAt")) or utcnow(),
        )

    def apply_patch(self, patch: Dict[str, Any]):
        """Apply a store patch: top-level fields overwrite, node runs merge per node id"""
        patch_fields = {key: value for key, value in patch.items() if key != "nodeRuns"}
        if patch_fields:
            merged = self.to_dict()
            merged.update(patch_fields)
            merged["nodeRuns"] = {}
            updated = Execution.from_dict(merged)
            updated.node_runs = self.node_runs
            self.__dict__.update(updated.__dict__)
        for node_id, run_patch in patch.get("nodeRuns", {}).items():
            existing = self.node_runs.get(node_id)
            base = existing.to_dict() if existing else {"nodeId": node_id}
            base.update(run_patch)
            self.node_runs[node_id] = NodeRunResult.from_dict(base)


@dataclass
class ExecutionEvent:
    """Execution event"""
    id: str = field(default_factory=lambda: str(uuid4()))
    execution_id: str = ""
    workflow_id: str = ""
    node_id: Optional[str] = None
    event_type: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class ExecutionEventType(Enum):
    """Execution event types"""
    EXECUTION_STARTED = "execution_started"
    EXECUTION_WAITING = "execution_waiting"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_SUCCEEDED = "execution_succeeded"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELED = "execution_canceled"

    NODE_STARTED = "node_started"
    NODE_SUCCEEDED = "node_succeeded"
    NODE_FAILED = "node_failed"
    NODE_RETRYING = "node_retrying"
    NODE_WAITING = "node_waiting"
    NODE_SKIPPED = "node_skipped"
