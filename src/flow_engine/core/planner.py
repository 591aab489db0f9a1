"""
Execution planner: groups the workflow graph into topological levels
"""
import hashlib
import json
from collections import deque
from typing import Dict, List, Optional, Deque, Set

from ..models.workflow import WorkflowDefinition, ExecutionPlan


class ExecutionPlanner:
    """Kahn's algorithm over main and accepted error connections"""

    def plan(self, definition: WorkflowDefinition) -> ExecutionPlan:
        """Compute the level plan; pure and deterministic"""
        order = {node_id: index for index, node_id in enumerate(definition.node_ids)}
        reachable = self._reachable(definition)

        in_degree: Dict[str, int] = {node_id: 0 for node_id in reachable}
        successors: Dict[str, List[str]] = {node_id: [] for node_id in reachable}
        for _, connection in definition.active_connections:
            if connection.from_node in reachable and connection.to_node in reachable:
                in_degree[connection.to_node] += 1
                successors[connection.from_node].append(connection.to_node)

        levels: List[tuple] = []
        current = sorted((n for n, d in in_degree.items() if d == 0), key=order.__getitem__)
        while current:
            levels.append(tuple(current))
            following: Set[str] = set()
            for node_id in current:
                for target in successors[node_id]:
                    in_degree[target] -= 1
                    if in_degree[target] == 0:
                        following.add(target)
            current = sorted(following, key=order.__getitem__)

        return ExecutionPlan(
            workflow_id=definition.id,
            levels=tuple(levels),
            entry_nodes=definition.entry_nodes,
            unreachable=tuple(n for n in definition.node_ids if n not in reachable),
        )

    def _reachable(self, definition: WorkflowDefinition) -> Set[str]:
        successors: Dict[str, List[str]] = {node_id: [] for node_id in definition.node_ids}
        for _, connection in definition.active_connections:
            successors[connection.from_node].append(connection.to_node)

        reached: Set[str] = set(definition.entry_nodes)
        pending: Deque[str] = deque(definition.entry_nodes)
        while pending:
            for target in successors[pending.popleft()]:
                if target not in reached:
                    reached.add(target)
                    pending.append(target)
        return reached


class ExecutionPlanCache:
    """Simple LRU cache for execution plans."""

    def __init__(self, capacity: int = 128) -> None:
        self.capacity = capacity
        self._cache: Dict[str, ExecutionPlan] = {}
        self._order: Deque[str] = deque()

    @staticmethod
    def key_for(definition: WorkflowDefinition) -> str:
        """id:version plus a content fingerprint, so an edited definition is replanned"""
        content = json.dumps(definition.to_dict(), sort_keys=True, default=str)
        fingerprint = hashlib.sha1(content.encode("utf-8")).hexdigest()[:12]
        return f"{definition.id}:{definition.version}:{fingerprint}"

    def get(self, key: str) -> Optional[ExecutionPlan]:
        plan = self._cache.get(key)
        if plan is not None:
            self._order.remove(key)
            self._order.append(key)
        return plan

    def put(self, key: str, plan: ExecutionPlan) -> None:
        if key in self._cache:
            self._order.remove(key)
        elif len(self._cache) >= self.capacity:
            oldest = self._order.popleft()
            self._cache.pop(oldest, None)
        self._cache[key] = plan
        self._order.append(key)

    def invalidate(self, workflow_id: str) -> None:
        """Drop every cached version of a workflow"""
        for key in [k for k in self._cache if k.startswith(f"{workflow_id}:")]:
            self._cache.pop(key)
            self._order.remove(key)

    def clear(self) -> None:
        self._cache.clear()
        self._order.clear()

    def __len__(self) -> int:
        return len(self._cache)
