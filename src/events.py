"""
Resource events - in-memory pub/sub for changes made by the controller.

Every create, update, delete and import publishes a ResourceEvent.
Listeners are plain callables run inline; subscriptions are queues that
collect events for a later read.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of resource events."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    IMPORTED = "IMPORTED"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ResourceEvent:
    """A change to one managed resource."""

    event_type: EventType
    address: str
    resource_type: str
    resource_id: Optional[str]
    timestamp: str = field(default_factory=_timestamp)

    def to_json(self) -> str:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return json.dumps(data)

    @classmethod
    def for_resource(
        cls,
        event_type: EventType,
        address: str,
        resource_type: str,
        resource_id: Optional[str],
    ) -> "ResourceEvent":
        return cls(event_type, address, resource_type, resource_id)


class EventSubscription:
    """Queue of the events published since subscribing."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def drain(self) -> List[ResourceEvent]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events


class EventBus:
    """
    Fan-out of resource events to listeners and subscriptions.

    Each subscription has a bounded queue; an event that does not fit
    is dropped for that subscriber only.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._listeners: List[Callable[[ResourceEvent], Any]] = []
        self._subscriptions: Dict[str, EventSubscription] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def add_listener(self, listener: Callable[[ResourceEvent], Any]) -> None:
        """Call listener synchronously for every published event."""
        self._listeners.append(listener)

    async def publish(self, event: ResourceEvent) -> None:
        logger.debug(f"Event {event.event_type.value} for {event.address}")

        for listener in self._listeners:
            listener(event)

        async with self._lock:
            subscriptions = list(self._subscriptions.items())

        for subscriber_id, subscription in subscriptions:
            try:
                subscription._queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber {subscriber_id} is full, dropping {event.address}")

    async def subscribe(self) -> Tuple[str, EventSubscription]:
        """
        Subscribe to every event published from now on.

        Returns:
            The subscriber ID and its subscription.
        """
        subscriber_id = f"subscriber-{next(self._ids)}"
        subscription = EventSubscription(asyncio.Queue(maxsize=self._queue_size))
        async with self._lock:
            self._subscriptions[subscriber_id] = subscription

        logger.debug(f"Added event subscriber {subscriber_id}")
        return subscriber_id, subscription

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber. Events already queued stay readable."""
        async with self._lock:
            subscription = self._subscriptions.pop(subscriber_id, None)
        if subscription is not None:
            logger.debug(f"Removed event subscriber {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscriptions)
