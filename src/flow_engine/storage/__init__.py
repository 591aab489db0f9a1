"""Storage and repository interfaces"""

from .repository import (
    Page,
    WorkflowRecord,
    WorkflowRepository,
    ExecutionStore,
    InMemoryWorkflowRepository,
    InMemoryExecutionStore
)
from .recorder import ExecutionRecorder

__all__ = [
    "Page",
    "WorkflowRecord",
    "WorkflowRepository",
    "ExecutionStore",
    "InMemoryWorkflowRepository",
    "InMemoryExecutionStore",
    "ExecutionRecorder"
]
