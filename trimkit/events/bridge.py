from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TOOL_STATUS_TOPIC = "tool_status"
DEFAULT_QUEUE_SIZE = 256


@dataclass(frozen=True, slots=True)
class BridgeEvent:
    topic: str
    payload: Any


class Subscription:
    """Ordered stream of events for one listener on one topic."""

    def __init__(self, bridge: EventBridge, topic: str, queue: asyncio.Queue[BridgeEvent]):
        self._bridge = bridge
        self.topic = topic
        self._queue = queue

    async def get(self) -> BridgeEvent:
        return await self._queue.get()

    def get_nowait(self) -> BridgeEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bridge._unregister(self.topic, self._queue)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BridgeEvent:
        return await self.get()


class EventBridge:
    """In-memory publish/subscribe channel with one queue per listener.

    Publishing never waits on a listener. Every event reaches every listener
    attached at publish time, in publish order, except ``droppable`` events
    (intermediate progress) which are skipped for a listener whose backlog
    already holds ``queue_size`` events. A new listener first receives the
    latest event of its topic.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._queue_size = max(1, queue_size)
        self._listeners: dict[str, list[asyncio.Queue[BridgeEvent]]] = defaultdict(list)
        self._latest: dict[str, BridgeEvent] = {}

    def subscribe(self, topic: str, *, replay_latest: bool = True) -> Subscription:
        queue: asyncio.Queue[BridgeEvent] = asyncio.Queue()
        latest = self._latest.get(topic)
        if replay_latest and latest is not None:
            queue.put_nowait(latest)
        self._listeners[topic].append(queue)
        return Subscription(self, topic, queue)

    async def publish(self, topic: str, payload: Any, *, droppable: bool = False) -> None:
        event = BridgeEvent(topic=topic, payload=payload)
        self._latest[topic] = event
        delivered = skipped = 0
        for queue in self._listeners.get(topic, ()):
            if droppable and queue.qsize() >= self._queue_size:
                skipped += 1
                continue
            queue.put_nowait(event)
            delivered += 1
        if skipped:
            logger.debug("Skipped %s event for %d backlogged listener(s)", topic, skipped)
        logger.debug("Published %s event to %d listener(s)", topic, delivered)

    def latest(self, topic: str) -> BridgeEvent | None:
        return self._latest.get(topic)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    def _unregister(self, topic: str, queue: asyncio.Queue[BridgeEvent]) -> None:
        listeners = self._listeners.get(topic)
        if listeners and queue in listeners:
            listeners.remove(queue)
