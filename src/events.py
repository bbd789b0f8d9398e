"""
Event Streaming - In-memory pub/sub for object change events.

The store publishes an ObjectEvent after every successful write. The
controller subscribes with a kind filter to drive its watches, and the HTTP
plugin subscribes to serve Server-Sent Events. Delivery is best effort: a
subscriber that falls behind loses events, and the controller's periodic
resync makes up for them.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from objects import NamespacedName, OwnerReference

logger = logging.getLogger(__name__)

EventFilter = Callable[["ObjectEvent"], bool]


class EventType(Enum):
    """What happened to the object."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ObjectEvent:
    """A single change to a stored Ingress or Route."""

    event_type: EventType
    kind: str
    namespace: str
    name: str
    uid: str = ""
    resource_version: int = 0
    owner_references: List[OwnerReference] = field(default_factory=list)
    object_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    def to_sse(self) -> str:
        """Render as one Server-Sent Events message."""
        payload = json.dumps(
            {
                "event_type": self.event_type.value,
                "kind": self.kind,
                "namespace": self.namespace,
                "name": self.name,
                "uid": self.uid,
                "resource_version": self.resource_version,
                "object": self.object_data,
                "timestamp": self.timestamp,
            },
            default=_encode_datetime,
        )
        return f"event: {self.event_type.value}\ndata: {payload}\n\n"

    @classmethod
    def from_object(cls, event_type: EventType, obj: Any) -> "ObjectEvent":
        """Snapshot an Ingress or Route as it was written."""
        meta = obj.metadata
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        return cls(
            event_type=event_type,
            kind=obj.KIND,
            namespace=meta.namespace,
            name=meta.name,
            uid=meta.uid,
            resource_version=meta.resource_version,
            owner_references=list(meta.owner_references),
            object_data=obj.to_dict(),
            timestamp=now.isoformat() + "Z",
        )


def _encode_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class EventSubscription:
    """
    Async iterator over the events delivered to one subscriber.

    Iteration ends when the bus sends the ``None`` sentinel on unsubscribe.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator[ObjectEvent]:
        return self

    async def __anext__(self) -> ObjectEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


@dataclass
class _Subscriber:
    queue: asyncio.Queue
    filter_fn: Optional[EventFilter] = None

    def wants(self, event: ObjectEvent) -> bool:
        return self.filter_fn is None or self.filter_fn(event)


class EventBus:
    """
    Fan-out of ObjectEvents to any number of subscribers.

    Each subscriber owns a bounded queue. Filters run at publish time so
    events a subscriber does not want never take up room in its queue.
    Publishing never blocks the writer: when a queue is full the event is
    dropped for that subscriber and a warning is logged.
    """

    def __init__(self, queue_size: int = 1024):
        self._queue_size = queue_size
        self._subscribers: Dict[str, _Subscriber] = {}

    async def publish(self, event: ObjectEvent) -> None:
        for subscriber_id, subscriber in list(self._subscribers.items()):
            if not subscriber.wants(event):
                continue
            try:
                subscriber.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Subscriber {subscriber_id} is behind, dropped "
                    f"{event.event_type.value} {event.kind} {event.key}"
                )

    async def subscribe(
        self, filter_fn: Optional[EventFilter] = None
    ) -> Tuple[str, EventSubscription]:
        """
        Register a subscriber.

        Args:
            filter_fn: Predicate selecting the events to deliver; all
                events are delivered when omitted.

        Returns:
            ``(subscriber_id, subscription)``; pass the id to
            :meth:`unsubscribe` when done.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = _Subscriber(queue, filter_fn)
        logger.debug(f"Event subscriber {subscriber_id} registered")
        return subscriber_id, EventSubscription(queue)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Drop a subscriber and end its iteration. Unknown ids are ignored."""
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return

        queue = subscriber.queue
        if queue.full():
            # Pending events are discarded anyway; make room for the sentinel
            queue.get_nowait()
        queue.put_nowait(None)
        logger.debug(f"Event subscriber {subscriber_id} removed")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
