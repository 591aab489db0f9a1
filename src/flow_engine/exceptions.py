"""
Flow engine exception definitions
"""
from typing import List, Optional


class FlowEngineError(Exception):
    """Base exception of the flow engine"""
    pass


class WorkflowValidationError(FlowEngineError):
    """Workflow definition is malformed; raised before any run starts"""
    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = details or []
        super().__init__(message)


# The error taxonomy calls this plain "ValidationError"
ValidationError = WorkflowValidationError


class CycleDetectedError(WorkflowValidationError):
    """Main connections form a cycle"""
    def __init__(self, path: List[str]):
        self.path = list(path)
        super().__init__(f"Cycle detected: {' -> '.join(self.path)}")


class DuplicateNodeError(WorkflowValidationError):
    """Two nodes share the same id"""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Duplicate node id: '{node_id}'")


class UnknownConnectionEndpointError(WorkflowValidationError):
    """A connection references a node that does not exist"""
    def __init__(self, node_id: str, side: str):
        self.node_id = node_id
        self.side = side
        super().__init__(f"Connection {side} '{node_id}' not found in nodes")


class UnknownNodeTypeError(FlowEngineError):
    """No capability registered for a node type"""
    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Unknown node type: '{node_type}'")


class RegistryFrozenError(FlowEngineError):
    """Registry no longer accepts registrations"""
    pass


class NodeExecutionError(FlowEngineError):
    """Capability reported a failure"""
    def __init__(self, node_id: str, message: str, cause: Exception = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"Node '{node_id}' execution failed: {message}")


class NodeTimeoutError(NodeExecutionError):
    """A node attempt exceeded its maximum duration"""
    def __init__(self, node_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(node_id, f"timed out after {timeout}s")


class CancellationRequested(FlowEngineError):
    """Cooperative cancellation; a deliberate terminal transition, not a failure"""
    pass


class StoreWriteError(FlowEngineError):
    """Execution store could not persist a write"""
    pass


class ExecutionFinalizedError(StoreWriteError):
    """Attempt to modify an execution that already reached a terminal status"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' is finalized and can no longer be updated")


class ExecutionNotFoundError(FlowEngineError):
    """Execution id is unknown to the store"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class InvalidExecutionStateError(FlowEngineError):
    """Operation not allowed in the execution's current status"""
    pass


class UnknownWorkflowError(FlowEngineError):
    """Trigger references a workflow that does not exist"""
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkflowDisabledError(FlowEngineError):
    """Trigger references a disabled workflow"""
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow is disabled: {workflow_id}")


class EngineOverloadedError(FlowEngineError):
    """Engine is shedding load"""
    pass
