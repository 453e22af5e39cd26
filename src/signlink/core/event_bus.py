"""
Event Bus: lightweight async pub/sub for the unified message stream.

The router publishes, consumers (display, speech, alarm, the WebSocket
surface) subscribe:

- messages : every accepted UnifiedMessage
- alarm    : the emergency sentinel, in addition to ``messages``
- status   : transport state changes (device / peer)
- error    : user-facing, dismissible failures
- history  : history was cleared

Each subscriber gets its own asyncio.Queue so a slow consumer never blocks
the router. Subscribing to ``ALL_TOPICS`` receives ``BusEvent`` values for
every topic.

Usage:
    bus = EventBus()
    queue = bus.subscribe("messages")
    async for message in bus.listen(queue):
        display(message)
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)

ALL_TOPICS = "*"

# Sentinel to signal end of stream
_STREAM_END = object()


@dataclass(frozen=True)
class BusEvent:
    """Envelope delivered to wildcard subscribers."""

    topic: str
    payload: Any


class EventBus:
    """
    Async pub/sub event bus.

    Single event loop only. publish() never waits on a subscriber; a full
    queue drops the event for that subscriber alone.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    async def publish(self, topic: str, event: Any) -> int:
        """
        Publish an event to all subscribers of a topic (and wildcard ones).

        Returns the number of queues that received the event.
        """
        delivered = self._deliver(self._subscribers.get(topic, []), event, topic)
        if topic != ALL_TOPICS:
            delivered += self._deliver(
                self._subscribers.get(ALL_TOPICS, []), BusEvent(topic, event), topic
            )
        return delivered

    @staticmethod
    def _deliver(queues: list[asyncio.Queue], item: Any, topic: str) -> int:
        delivered = 0
        for queue in queues:
            try:
                queue.put_nowait(item)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Event bus: subscriber queue full for topic %s, dropping event",
                    topic,
                )
        return delivered

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        """Subscribe to a topic (or ``ALL_TOPICS``). Returns the subscriber queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        logger.debug(
            "Subscribed to topic: %s (total: %d)", topic, len(self._subscribers[topic])
        )
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Remove a subscriber's queue. Safe to call twice."""
        queues = self._subscribers.get(topic, [])
        try:
            queues.remove(queue)
        except ValueError:
            return
        if not queues:
            del self._subscribers[topic]
        logger.debug("Unsubscribed from topic: %s", topic)

    async def publish_end(self, topic: str) -> None:
        """Signal end-of-stream to all subscribers of a topic."""
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                pass

    async def close(self) -> None:
        """End every stream. Used on shutdown so listeners return."""
        for topic in list(self._subscribers):
            await self.publish_end(topic)

    async def listen(self, queue: asyncio.Queue) -> AsyncGenerator[Any, None]:
        """Yield events from a subscriber queue until end-of-stream."""
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    def active_topics(self) -> list[str]:
        return [t for t, subs in self._subscribers.items() if subs]
