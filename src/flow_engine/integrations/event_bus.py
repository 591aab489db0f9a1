"""
In-process event bus
"""
import asyncio
from typing import Dict, Any, List, Callable, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging


logger = logging.getLogger(__name__)

EXECUTION_EVENTS_TOPIC = "workflow.execution.events"
NODE_EVENTS_TOPIC = "workflow.node.events"
STORE_WRITE_FAILED_TOPIC = "execution.store_write_failed"


@dataclass
class Event:
    """Envelope delivered to subscribers"""
    topic: str
    payload: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    headers: Dict[str, str] = field(default_factory=dict)


class EventBus:
    """Async publish/subscribe; a failing subscriber never affects the publisher"""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def publish(self, topic: str, payload: Any, headers: Dict[str, str] = None):
        """Publish an event to every subscriber of a topic and wait for delivery"""
        tasks = self.publish_nowait(topic, payload, headers)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def publish_nowait(self, topic: str, payload: Any, headers: Dict[str, str] = None) -> List[asyncio.Task]:
        """Schedule delivery to every subscriber of a topic without waiting for it"""
        event = Event(
            topic=topic,
            payload=payload,
            headers=headers or {}
        )

        subscribers = list(self.subscribers.get(topic, []))
        tasks = [
            asyncio.create_task(self._notify_subscriber(subscriber, event))
            for subscriber in subscribers
        ]
        for task in tasks:
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug(f"Published event to topic '{topic}' with {len(subscribers)} subscribers")
        return tasks

    async def drain(self):
        """Wait until every scheduled delivery has finished"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def subscribe(self, topic: str, handler: Callable):
        """Subscribe a sync or async handler"""
        async with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

        logger.info(f"Subscribed to topic '{topic}'")

    async def unsubscribe(self, topic: str, handler: Callable):
        async with self._lock:
            if topic in self.subscribers and handler in self.subscribers[topic]:
                self.subscribers[topic].remove(handler)
                if not self.subscribers[topic]:
                    del self.subscribers[topic]

        logger.info(f"Unsubscribed from topic '{topic}'")

    async def _notify_subscriber(self, subscriber: Callable, event: Event):
        try:
            if asyncio.iscoroutinefunction(subscriber):
                await subscriber(event)
            else:
                subscriber(event)
        except Exception as e:
            logger.error(f"Error notifying subscriber for topic '{event.topic}': {e}", exc_info=True)
