"""
Workflow builders and scripted capabilities shared by the tests
"""
import asyncio
from typing import Dict, Any

from flow_engine.config import EngineSettings
from flow_engine.core.parser import WorkflowParser
from flow_engine.core.registry import NodeRegistry, WaitForResume
from flow_engine.exceptions import CancellationRequested
from flow_engine.models.workflow import Item


def fast_settings(**overrides) -> EngineSettings:
    """Settings with short timeouts and store retries"""
    values = dict(
        worker_pool_size=4,
        default_node_timeout=5.0,
        max_active_executions=50,
        store_retry_attempts=2,
        store_retry_delay=0.01,
    )
    values.update(overrides)
    return EngineSettings(**values)


def workflow(nodes, connections=None, **extra) -> Dict[str, Any]:
    """Workflow document in wire format"""
    data: Dict[str, Any] = {"id": extra.pop("id", "wf-test"), "nodes": nodes}
    if connections is not None:
        data["connections"] = connections
    data.update(extra)
    return data


def link(source: str, target: str, output: int = 0, kind: str = "main", to_input: int = 0) -> Dict[str, Any]:
    return {
        "fromNodeId": source,
        "fromOutputIndex": output,
        "toNodeId": target,
        "toInputIndex": to_input,
        "type": kind,
    }


def parse(document: Dict[str, Any]):
    return WorkflowParser().load(document)


def register_test_nodes(registry: NodeRegistry) -> NodeRegistry:
    """Capabilities with scripted behaviour"""

    @registry.capability("emit")
    async def emit(items, parameters, context):
        # parameters.slots gives one list per output slot
        if parameters.get("delay"):
            await asyncio.sleep(parameters["delay"])
        if "slots" in parameters:
            return [[Item(json=dict(value)) for value in slot] for slot in parameters["slots"]]
        return [[Item(json=dict(value)) for value in parameters.get("items", [])]]

    @registry.capability("tag")
    async def tag(items, parameters, context):
        for item in items:
            item.json.setdefault("seen", []).append(context.node_id)
        return [items]

    @registry.capability("fail")
    async def fail(items, parameters, context):
        raise RuntimeError(parameters.get("message", "boom"))

    @registry.capability("flaky")
    async def flaky(items, parameters, context):
        if context.attempt < parameters.get("succeedOn", 2):
            raise RuntimeError(f"attempt {context.attempt} failed")
        return [items]

    @registry.capability("sleep")
    async def sleep(items, parameters, context):
        await asyncio.sleep(parameters.get("seconds", 1.0))
        return [items]

    @registry.capability("pause")
    async def pause(items, parameters, context):
        return WaitForResume(timeout=parameters.get("timeout"))

    @registry.capability("selfCancel")
    async def self_cancel(items, parameters, context):
        raise CancellationRequested("stop requested by node")

    @registry.capability("gate")
    async def gate(items, parameters, context):
        # Holds a worker until the run is cancelled
        while not context.cancelled:
            await asyncio.sleep(0.01)
        return [items]

    @registry.capability("appendParam")
    async def append_param(items, parameters, context):
        parameters["log"].append(context.execution_id)
        parameters["nested"]["count"] += 1
        return [[Item(json={"log": list(parameters["log"]), "count": parameters["nested"]["count"]})]]

    return registry


async def wait_for_node_status(engine, execution_id: str, node_id: str, status, attempts: int = 300):
    """Poll the live execution until a node reaches a status"""
    for _ in range(attempts):
        execution = await engine.get_execution(execution_id)
        if execution.node_runs[node_id].status == status:
            return execution
        await asyncio.sleep(0.01)
    raise AssertionError(f"node {node_id} never reached {status}")
