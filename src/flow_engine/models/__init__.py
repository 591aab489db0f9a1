"""Workflow and execution models"""

from .workflow import (
    WorkflowDefinition, NodeSpec, Connection, ConnectionKind, Item, BinaryRef,
    OnErrorPolicy, BackoffStrategy, RetryPolicy, ValidationWarning, ExecutionPlan
)
from .execution import (
    Execution, NodeRunResult, ExecutionStatus, NodeRunStatus,
    ExecutionEvent, ExecutionEventType
)

__all__ = [
    "WorkflowDefinition",
    "NodeSpec",
    "Connection",
    "ConnectionKind",
    "Item",
    "BinaryRef",
    "OnErrorPolicy",
    "BackoffStrategy",
    "RetryPolicy",
    "ValidationWarning",
    "ExecutionPlan",
    "Execution",
    "NodeRunResult",
    "ExecutionStatus",
    "NodeRunStatus",
    "ExecutionEvent",
    "ExecutionEventType"
]
