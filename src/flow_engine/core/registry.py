"""
Node registry: maps node types to executable capabilities
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, List, Mapping, Optional, Callable, Awaitable, Union

from ..models.workflow import Item
from ..exceptions import UnknownNodeTypeError, RegistryFrozenError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaitForResume:
    """Returned by a capability to suspend its node until resumed"""
    timeout: Optional[float] = None  # seconds; None waits indefinitely


@dataclass(frozen=True)
class NodeContext:
    """Read-only run metadata handed to a capability"""
    execution_id: str
    workflow_id: str
    node_id: str
    node_name: str = ""
    attempt: int = 1
    mode: str = "manual"
    inputs_by_index: Mapping[int, List[Item]] = field(default_factory=dict)
    cancel_event: Optional[asyncio.Event] = None
    logger: logging.Logger = field(default=logger)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


CapabilityResult = Union[List[List[Item]], WaitForResume]


class NodeCapability(ABC):
    """Executable behaviour bound to a node type"""

    @abstractmethod
    async def execute(
        self,
        items: List[Item],
        parameters: Mapping[str, Any],
        context: NodeContext
    ) -> CapabilityResult:
        """Run the node; returns one item list per output slot"""
        pass

    def validate_parameters(self, parameters: Mapping[str, Any]):
        """Raise WorkflowValidationError on unusable parameters"""
        return None


class FunctionCapability(NodeCapability):
    """Adapts a plain async function to the capability interface"""

    def __init__(
        self,
        func: Callable[[List[Item], Mapping[str, Any], NodeContext], Awaitable[CapabilityResult]],
        validator: Optional[Callable[[Mapping[str, Any]], None]] = None
    ):
        self.func = func
        self.validator = validator

    async def execute(self, items, parameters, context):
        return await self.func(items, parameters, context)

    def validate_parameters(self, parameters):
        if self.validator is not None:
            self.validator(parameters)

    def __repr__(self):
        return f"FunctionCapability({getattr(self.func, '__name__', self.func)!r})"


class NodeRegistry:
    """Process-wide dispatch table from node type to capability"""

    def __init__(self):
        self._capabilities: Dict[str, NodeCapability] = {}
        self._frozen = False

    def register(self, node_type: str, capability: NodeCapability):
        """Bind a capability to a node type, replacing any previous binding"""
        if self._frozen:
            raise RegistryFrozenError(f"Registry is frozen; cannot register '{node_type}'")
        if not isinstance(capability, NodeCapability):
            raise TypeError(f"Capability for '{node_type}' must implement NodeCapability")
        if node_type in self._capabilities:
            logger.warning(f"Replacing capability for node type '{node_type}'")
        self._capabilities[node_type] = capability
        logger.debug(f"Registered node type '{node_type}'")

    def capability(self, node_type: str, validator: Optional[Callable[[Mapping[str, Any]], None]] = None):
        """Decorator registering an async function as a capability"""
        def decorator(func):
            self.register(node_type, FunctionCapability(func, validator))
            return func
        return decorator

    def resolve(self, node_type: str) -> NodeCapability:
        try:
            return self._capabilities[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type)

    def freeze(self):
        """Make the registry read-only"""
        self._frozen = True
        logger.info(f"Node registry frozen with {len(self._capabilities)} node types")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def types(self) -> List[str]:
        return sorted(self._capabilities)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)


def default_registry() -> NodeRegistry:
    """Registry populated with the built-in node catalogue"""
    from ..nodes.builtin import register_builtin_nodes

    registry = NodeRegistry()
    register_builtin_nodes(registry)
    return registry
