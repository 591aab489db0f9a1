"""
Flow Automation Engine - node-graph workflow runtime
"""

__version__ = "0.1.0"

from .core.engine import ExecutionEngine
from .core.parser import WorkflowParser
from .core.planner import ExecutionPlanner
from .core.registry import NodeRegistry, NodeCapability, NodeContext, WaitForResume, default_registry
from .core.triggers import TriggerService
from .models.workflow import WorkflowDefinition, NodeSpec, Connection, Item
from .models.execution import Execution, NodeRunResult, ExecutionStatus, NodeRunStatus

__all__ = [
    "ExecutionEngine",
    "WorkflowParser",
    "ExecutionPlanner",
    "NodeRegistry",
    "NodeCapability",
    "NodeContext",
    "WaitForResume",
    "default_registry",
    "TriggerService",
    "WorkflowDefinition",
    "NodeSpec",
    "Connection",
    "Item",
    "Execution",
    "NodeRunResult",
    "ExecutionStatus",
    "NodeRunStatus"
]
