"""Core workflow engine components"""

from .engine import ExecutionEngine
from .scheduler import WorkerPool
from .parser import WorkflowParser
from .planner import ExecutionPlanner, ExecutionPlanCache
from .registry import NodeRegistry, default_registry
from .triggers import TriggerService, ScheduleRunner

__all__ = [
    "ExecutionEngine",
    "WorkerPool",
    "WorkflowParser",
    "ExecutionPlanner",
    "ExecutionPlanCache",
    "NodeRegistry",
    "default_registry",
    "TriggerService",
    "ScheduleRunner"
]
