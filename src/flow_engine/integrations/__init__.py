"""Integrations with the outside of the engine"""

from .event_bus import (
    Event, EventBus, EXECUTION_EVENTS_TOPIC, NODE_EVENTS_TOPIC, STORE_WRITE_FAILED_TOPIC
)

__all__ = [
    "Event",
    "EventBus",
    "EXECUTION_EVENTS_TOPIC",
    "NODE_EVENTS_TOPIC",
    "STORE_WRITE_FAILED_TOPIC"
]
