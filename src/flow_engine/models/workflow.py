"""
Workflow definition models
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple, FrozenSet, Mapping
from types import MappingProxyType
from enum import Enum
import copy
import json


class OnErrorPolicy(Enum):
    """What a node does once its retries are exhausted"""
    STOP = "stop"
    CONTINUE_WITH_EMPTY = "continueWithEmpty"
    CONTINUE_WITH_INPUT = "continueWithInput"


class BackoffStrategy(Enum):
    """Delay growth between retry attempts"""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class ConnectionKind(Enum):
    """Connection type"""
    MAIN = "main"
    ERROR = "error"


@dataclass(frozen=True)
class BinaryRef:
    """Reference to binary data stored outside the item"""
    ref: str
    mime_type: str = "application/octet-stream"
    file_name: Optional[str] = None
    size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "mimeType": self.mime_type,
            "fileName": self.file_name,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BinaryRef":
        return cls(
            ref=data["ref"],
            mime_type=data.get("mimeType", "application/octet-stream"),
            file_name=data.get("fileName"),
            size=data.get("size"),
        )


@dataclass
class Item:
    """One unit of data flowing along a connection"""
    json: Dict[str, Any] = field(default_factory=dict)
    binary: Optional[Dict[str, BinaryRef]] = None
    paired_item: Optional[int] = None

    def copy(self) -> "Item":
        """Deep copy, so a consumer never mutates another node's data"""
        return Item(
            json=copy.deepcopy(self.json),
            binary=dict(self.binary) if self.binary is not None else None,
            paired_item=self.paired_item,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"json": self.json}
        if self.binary:
            data["binary"] = {key: ref.to_dict() for key, ref in self.binary.items()}
        if self.paired_item is not None:
            data["pairedItem"] = self.paired_item
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        binary = data.get("binary")
        return cls(
            json=dict(data.get("json", {})),
            binary={key: BinaryRef.from_dict(ref) for key, ref in binary.items()} if binary else None,
            paired_item=data.get("pairedItem"),
        )


def copy_items(items: List[Item]) -> List[Item]:
    return [item.copy() for item in items]


def items_from_payload(payload: Any) -> List[Item]:
    """
    Convert a trigger payload into the seed items of a run

    None gives one empty item, a mapping one item, a list one item per
    element. Bytes and strings are JSON-decoded when possible and kept as
    {"body": text} otherwise. Other scalars become {"value": x}.
    """
    if payload is None:
        return [Item()]
    if isinstance(payload, Item):
        return [payload.copy()]
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8", errors="replace")
    if isinstance(payload, str):
        if not payload.strip():
            return [Item()]
        try:
            decoded = json.loads(payload)
        except ValueError:
            return [Item(json={"body": payload})]
        if isinstance(decoded, str):
            return [Item(json={"body": decoded})]
        return items_from_payload(decoded)
    if isinstance(payload, Mapping):
        return [Item(json=copy.deepcopy(dict(payload)))]
    if isinstance(payload, (list, tuple)):
        return [_element_to_item(element) for element in payload]
    return [Item(json={"value": payload})]


def _element_to_item(element: Any) -> Item:
    if isinstance(element, Item):
        return element.copy()
    if isinstance(element, Mapping):
        return Item(json=copy.deepcopy(dict(element)))
    return Item(json={"value": copy.deepcopy(element)})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy of a node"""
    max_attempts: int = 1
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay: float = 1.0   # seconds
    max_delay: float = 60.0   # seconds
    jitter: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxAttempts": self.max_attempts,
            "backoff": self.backoff.value,
            "baseDelay": self.base_delay,
            "maxDelay": self.max_delay,
            "jitter": self.jitter,
        }


@dataclass(frozen=True)
class NodeSpec:
    """A node of the workflow graph"""
    id: str
    type: str
    name: str = ""
    parameters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    on_error: OnErrorPolicy = OnErrorPolicy.STOP
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: Optional[float] = None  # seconds, falls back to the engine default
    disabled: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "parameters": copy.deepcopy(dict(self.parameters)),
            "onError": self.on_error.value,
            "retry": self.retry.to_dict(),
            "timeout": self.timeout,
            "disabled": self.disabled,
        }


@dataclass(frozen=True)
class Connection:
    """(from_node, from_output) -> (to_node, to_input)"""
    from_node: str
    to_node: str
    from_output: int = 0
    to_input: int = 0
    kind: ConnectionKind = ConnectionKind.MAIN

    @property
    def is_error(self) -> bool:
        return self.kind == ConnectionKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromNodeId": self.from_node,
            "fromOutputIndex": self.from_output,
            "toNodeId": self.to_node,
            "toInputIndex": self.to_input,
            "type": self.kind.value,
        }


@dataclass(frozen=True)
class ValidationWarning:
    """Non-fatal finding of workflow validation"""
    code: str
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "nodeId": self.node_id}


@dataclass(frozen=True)
class WorkflowDefinition:
    """Validated, immutable workflow definition"""
    id: str
    nodes: Tuple[NodeSpec, ...]
    connections: Tuple[Connection, ...] = ()
    name: str = ""
    version: str = "1"
    entry_nodes: Tuple[str, ...] = ()
    triggers: Tuple[Mapping[str, Any], ...] = ()
    settings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    warnings: Tuple[ValidationWarning, ...] = ()
    ignored_connections: FrozenSet[int] = frozenset()

    def get_node(self, node_id: str) -> Optional[NodeSpec]:
        """Look up a node by id"""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    @property
    def active_connections(self) -> List[Tuple[int, Connection]]:
        """Connections taking part in planning and dispatch, with their declaration index"""
        return [
            (index, connection)
            for index, connection in enumerate(self.connections)
            if index not in self.ignored_connections
        ]

    def incoming(self, node_id: str) -> List[Tuple[int, Connection]]:
        """Active connections into a node, in declaration order"""
        return [(i, c) for i, c in self.active_connections if c.to_node == node_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "nodes": [node.to_dict() for node in self.nodes],
            "connections": [connection.to_dict() for connection in self.connections],
            "entryNodes": list(self.entry_nodes),
            "triggers": [dict(trigger) for trigger in self.triggers],
            "settings": dict(self.settings),
        }


@dataclass(frozen=True)
class ExecutionPlan:
    """Level-ordered schedule derived from a definition"""
    workflow_id: str
    levels: Tuple[Tuple[str, ...], ...]
    entry_nodes: Tuple[str, ...] = ()
    unreachable: Tuple[str, ...] = ()

    @property
    def node_ids(self) -> List[str]:
        return [node_id for level in self.levels for node_id in level]

    def level_of(self, node_id: str) -> Optional[int]:
        for index, level in enumerate(self.levels):
            if node_id in level:
                return index
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "levels": [list(level) for level in self.levels],
            "entryNodes": list(self.entry_nodes),
            "unreachable": list(self.unreachable),
        }
