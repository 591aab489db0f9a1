"""
Pytest configuration and shared fixtures
"""
from typing import AsyncGenerator, Dict, Any

import pytest
import pytest_asyncio

from flow_engine.config import EngineSettings
from flow_engine.core.engine import ExecutionEngine
from flow_engine.core.registry import NodeRegistry, default_registry
from flow_engine.integrations import EventBus
from flow_engine.monitoring import MetricsRecorder
from flow_engine.storage.repository import InMemoryExecutionStore

from helpers import fast_settings, workflow, link, register_test_nodes


@pytest.fixture
def registry() -> NodeRegistry:
    """Built-in catalogue plus scripted test capabilities"""
    return register_test_nodes(default_registry())


@pytest.fixture
def settings() -> EngineSettings:
    return fast_settings()


@pytest_asyncio.fixture
async def engine(registry, settings) -> AsyncGenerator[ExecutionEngine, None]:
    """Started engine over an in-memory store"""
    engine = ExecutionEngine(
        registry=registry,
        store=InMemoryExecutionStore(),
        settings=settings,
        event_bus=EventBus(),
        metrics=MetricsRecorder()
    )
    await engine.start()
    yield engine
    await engine.stop()


@pytest.fixture
def sample_workflow() -> Dict[str, Any]:
    """Trigger -> A (3 items) -> B"""
    return workflow(
        nodes=[
            {"id": "trigger", "type": "manualTrigger"},
            {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}, {"n": 2}, {"n": 3}]}},
            {"id": "B", "type": "tag"},
        ],
        connections=[link("trigger", "A"), link("A", "B")],
    )
