"""
Workflow loader and validator
"""
import copy
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Any, List, Optional, Union, Set
from uuid import uuid4

import yaml
from croniter import croniter

from ..models.workflow import (
    WorkflowDefinition, NodeSpec, Connection, ConnectionKind,
    OnErrorPolicy, BackoffStrategy, RetryPolicy, ValidationWarning
)
from ..exceptions import (
    WorkflowValidationError, CycleDetectedError, DuplicateNodeError,
    UnknownConnectionEndpointError
)


logger = logging.getLogger(__name__)

WHITE, GREY, BLACK = 0, 1, 2


class WorkflowParser:
    """Turns raw workflow documents into validated WorkflowDefinitions"""

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def load(self, source: Union[str, Path, bytes, Dict[str, Any]]) -> WorkflowDefinition:
        """
        Load and validate a workflow definition

        Args:
            source: a dict, a YAML/JSON document, or a path to a .yaml/.yml/.json file

        Returns:
            WorkflowDefinition: the validated, immutable definition
        """
        if isinstance(source, dict):
            return self._parse_dict(source)

        if isinstance(source, bytes):
            source = source.decode('utf-8')

        if isinstance(source, (str, Path)):
            path = self._as_file(source)
            if path is not None:
                return self.load_file(path)
            return self.load_string(str(source))

        raise WorkflowValidationError(f"Unsupported source type: {type(source).__name__}")

    def load_file(self, file_path: Union[str, Path]) -> WorkflowDefinition:
        """Load a workflow file"""
        file_path = Path(file_path)
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowValidationError(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        return self._parse_dict(self.parsers[suffix](content))

    def load_string(self, content: str) -> WorkflowDefinition:
        """Load a workflow document; YAML is a superset of JSON"""
        return self._parse_dict(self._parse_yaml(content))

    def _as_file(self, source: Union[str, Path]) -> Optional[Path]:
        if isinstance(source, str) and '\n' in source:
            return None
        try:
            path = Path(source)
            if path.exists() and path.is_file():
                return path
        except OSError:
            # Strings too long to be a file name
            return None
        return None

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowValidationError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowValidationError(f"Failed to parse JSON: {e}")

    def _parse_dict(self, data: Any) -> WorkflowDefinition:
        if not isinstance(data, dict):
            raise WorkflowValidationError("Workflow definition must be a mapping")
        if 'workflow' in data and isinstance(data['workflow'], dict):
            data = data['workflow']

        nodes_data = data.get('nodes')
        if not isinstance(nodes_data, list) or not nodes_data:
            raise WorkflowValidationError("Workflow must declare at least one node")

        nodes = self._parse_nodes(nodes_data)
        node_ids = [node.id for node in nodes]

        connections_data = data.get('connections', data.get('edges', [])) or []
        if not isinstance(connections_data, list):
            raise WorkflowValidationError("'connections' must be a list")
        connections = [self._parse_connection(c, set(node_ids)) for c in connections_data]

        self._check_main_cycles(node_ids, connections)

        warnings: List[ValidationWarning] = []
        ignored = self._filter_error_cycles(node_ids, connections, warnings)
        accepted = [c for i, c in enumerate(connections) if i not in ignored]

        entry_nodes = self._resolve_entry_nodes(data.get('entryNodes'), node_ids, accepted)
        for node_id in self._unreachable(node_ids, entry_nodes, accepted):
            warnings.append(ValidationWarning(
                code="unreachable_node",
                message=f"Node '{node_id}' is not reachable from any entry node",
                node_id=node_id,
            ))

        triggers = self._parse_triggers(data.get('triggers', []) or [])

        definition = WorkflowDefinition(
            id=str(data.get('id') or uuid4()),
            name=data.get('name', ''),
            version=str(data.get('version', '1')),
            nodes=tuple(nodes),
            connections=tuple(connections),
            entry_nodes=tuple(entry_nodes),
            triggers=tuple(MappingProxyType(dict(t)) for t in triggers),
            settings=MappingProxyType(dict(data.get('settings', {}) or {})),
            warnings=tuple(warnings),
            ignored_connections=frozenset(ignored),
        )

        for warning in definition.warnings:
            logger.warning(f"Workflow {definition.id}: {warning.message}")

        return definition

    def _parse_triggers(self, triggers: Any) -> List[Dict[str, Any]]:
        if not isinstance(triggers, list):
            raise WorkflowValidationError("'triggers' must be a list")
        for index, trigger in enumerate(triggers):
            if not isinstance(trigger, dict) or not trigger.get('type'):
                raise WorkflowValidationError(f"Trigger #{index} must be a mapping with a type")
            if trigger['type'] != 'schedule':
                continue
            cron = trigger.get('cron')
            interval = trigger.get('intervalSeconds')
            if cron is not None:
                if not croniter.is_valid(str(cron)):
                    raise WorkflowValidationError(f"Trigger #{index} has invalid cron expression: {cron!r}")
            elif not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
                raise WorkflowValidationError(
                    f"Schedule trigger #{index} needs a cron expression or a positive intervalSeconds"
                )
        return triggers

    def _parse_nodes(self, nodes_data: List[Any]) -> List[NodeSpec]:
        nodes: List[NodeSpec] = []
        seen: Set[str] = set()
        for index, node_data in enumerate(nodes_data):
            if not isinstance(node_data, dict):
                raise WorkflowValidationError(f"Node #{index} must be a mapping")
            node_id = node_data.get('id')
            node_type = node_data.get('type')
            if not node_id or not isinstance(node_id, str):
                raise WorkflowValidationError(f"Node #{index} is missing an id")
            if not node_type or not isinstance(node_type, str):
                raise WorkflowValidationError(f"Node '{node_id}' is missing a type")
            if node_id in seen:
                raise DuplicateNodeError(node_id)
            seen.add(node_id)

            parameters = node_data.get('parameters', {}) or {}
            if not isinstance(parameters, dict):
                raise WorkflowValidationError(f"Node '{node_id}' parameters must be a mapping")

            timeout = node_data.get('timeout')
            if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
                raise WorkflowValidationError(f"Node '{node_id}' timeout must be a positive number")

            nodes.append(NodeSpec(
                id=node_id,
                type=node_type,
                name=node_data.get('name', ''),
                parameters=MappingProxyType(copy.deepcopy(parameters)),
                on_error=self._parse_on_error(node_id, node_data.get('onError', 'stop')),
                retry=self._parse_retry(node_id, node_data.get('retry')),
                timeout=float(timeout) if timeout is not None else None,
                disabled=bool(node_data.get('disabled', False)),
            ))
        return nodes

    def _parse_on_error(self, node_id: str, value: Any) -> OnErrorPolicy:
        try:
            return OnErrorPolicy(value)
        except ValueError:
            raise WorkflowValidationError(f"Node '{node_id}' has invalid onError policy: {value!r}")

    def _parse_retry(self, node_id: str, data: Any) -> RetryPolicy:
        if data is None:
            return RetryPolicy()
        if not isinstance(data, dict):
            raise WorkflowValidationError(f"Node '{node_id}' retry must be a mapping")

        max_attempts = data.get('maxAttempts', 1)
        if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
            raise WorkflowValidationError(f"Node '{node_id}' retry.maxAttempts must be an integer >= 1")
        try:
            backoff = BackoffStrategy(data.get('backoff', 'exponential'))
        except ValueError:
            raise WorkflowValidationError(f"Node '{node_id}' has invalid retry.backoff: {data.get('backoff')!r}")

        base_delay = data.get('baseDelay', 1.0)
        max_delay = data.get('maxDelay', 60.0)
        for key, value in (('baseDelay', base_delay), ('maxDelay', max_delay)):
            if not isinstance(value, (int, float)) or value < 0:
                raise WorkflowValidationError(f"Node '{node_id}' retry.{key} must be a non-negative number")

        return RetryPolicy(
            max_attempts=max_attempts,
            backoff=backoff,
            base_delay=float(base_delay),
            max_delay=float(max_delay),
            jitter=bool(data.get('jitter', False)),
        )

    def _parse_connection(self, data: Any, node_ids: Set[str]) -> Connection:
        if not isinstance(data, dict):
            raise WorkflowValidationError("Connection must be a mapping")

        from_node = data.get('fromNodeId', data.get('from'))
        to_node = data.get('toNodeId', data.get('to'))
        if from_node not in node_ids:
            raise UnknownConnectionEndpointError(str(from_node), "source")
        if to_node not in node_ids:
            raise UnknownConnectionEndpointError(str(to_node), "target")

        from_output = data.get('fromOutputIndex', 0)
        to_input = data.get('toInputIndex', 0)
        for key, value in (('fromOutputIndex', from_output), ('toInputIndex', to_input)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise WorkflowValidationError(
                    f"Connection {from_node} -> {to_node}: {key} must be a non-negative integer"
                )

        try:
            kind = ConnectionKind(data.get('type', 'main'))
        except ValueError:
            raise WorkflowValidationError(
                f"Connection {from_node} -> {to_node} has unknown type: {data.get('type')!r}"
            )

        return Connection(
            from_node=from_node,
            to_node=to_node,
            from_output=from_output,
            to_input=to_input,
            kind=kind,
        )

    def _check_main_cycles(self, node_ids: List[str], connections: List[Connection]):
        """Three-colour DFS over main connections; raises on the first back edge"""
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for connection in connections:
            if not connection.is_error:
                adjacency[connection.from_node].append(connection.to_node)

        color = {node_id: WHITE for node_id in node_ids}

        for root in node_ids:
            if color[root] != WHITE:
                continue
            # path holds the grey nodes; frames pair each with its next child index
            path: List[str] = [root]
            frames: List[List] = [[root, 0]]
            color[root] = GREY
            while frames:
                frame = frames[-1]
                node_id, index = frame
                targets = adjacency[node_id]
                if index == len(targets):
                    frames.pop()
                    path.pop()
                    color[node_id] = BLACK
                    continue
                frame[1] = index + 1
                target = targets[index]
                if color[target] == GREY:
                    start = path.index(target)
                    raise CycleDetectedError(path[start:] + [target])
                if color[target] == WHITE:
                    color[target] = GREY
                    path.append(target)
                    frames.append([target, 0])

    def _filter_error_cycles(
        self,
        node_ids: List[str],
        connections: List[Connection],
        warnings: List[ValidationWarning]
    ) -> Set[int]:
        """Drop error connections that would close a cycle with already accepted ones"""
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for connection in connections:
            if not connection.is_error:
                adjacency[connection.from_node].append(connection.to_node)

        ignored: Set[int] = set()
        for index, connection in enumerate(connections):
            if not connection.is_error:
                continue
            if self._reaches(adjacency, connection.to_node, connection.from_node):
                ignored.add(index)
                warnings.append(ValidationWarning(
                    code="error_connection_cycle",
                    message=(
                        f"Error connection {connection.from_node} -> {connection.to_node} "
                        f"would create a cycle and is ignored"
                    ),
                    node_id=connection.from_node,
                ))
                continue
            adjacency[connection.from_node].append(connection.to_node)
        return ignored

    @staticmethod
    def _reaches(adjacency: Dict[str, List[str]], start: str, goal: str) -> bool:
        seen = {start}
        pending = [start]
        while pending:
            current = pending.pop()
            if current == goal:
                return True
            for target in adjacency[current]:
                if target not in seen:
                    seen.add(target)
                    pending.append(target)
        return False

    def _resolve_entry_nodes(
        self,
        declared: Any,
        node_ids: List[str],
        connections: List[Connection]
    ) -> List[str]:
        targets = {connection.to_node for connection in connections}

        if declared:
            if not isinstance(declared, list):
                raise WorkflowValidationError("'entryNodes' must be a list of node ids")
            for node_id in declared:
                if node_id not in node_ids:
                    raise WorkflowValidationError(f"Entry node '{node_id}' not found in nodes")
                if node_id in targets:
                    raise WorkflowValidationError(f"Entry node '{node_id}' has incoming connections")
            return [node_id for node_id in node_ids if node_id in declared]

        entry_nodes = [node_id for node_id in node_ids if node_id not in targets]
        if not entry_nodes:
            raise WorkflowValidationError("Workflow has no entry node (no node with in-degree 0)")
        return entry_nodes

    def _unreachable(
        self,
        node_ids: List[str],
        entry_nodes: List[str],
        connections: List[Connection]
    ) -> List[str]:
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for connection in connections:
            adjacency[connection.from_node].append(connection.to_node)

        reached: Set[str] = set(entry_nodes)
        pending = list(entry_nodes)
        while pending:
            current = pending.pop()
            for target in adjacency[current]:
                if target not in reached:
                    reached.add(target)
                    pending.append(target)
        return [node_id for node_id in node_ids if node_id not in reached]

