"""
Transport Router: merges device and peer input into one message stream.

    DeviceChannelAdapter.events ─┐
                                 ├─► inbox ─► dispatch loop ─► EventBus
    PeerSessionManager.events  ──┘

Both sources are pumped into one inbox and applied by a single dispatch
loop, so history and dedup state have exactly one writer and the last
applied event wins. Nothing is ordered across sources.

Bus topics:
    messages  UnifiedMessage   every accepted message
    alarm     UnifiedMessage   the emergency sentinel (also on ``messages``)
    status    TransportStatus  device / peer state changes
    error     dict             user-facing device errors
    history   dict             history was cleared
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any, AsyncGenerator, Optional

from signlink.core.config import RouterConfig
from signlink.core.event_bus import EventBus
from signlink.models import (
    DeviceError,
    DeviceLine,
    DeviceStatus,
    Origin,
    PeerData,
    PeerStatus,
    TransportStatus,
    UnifiedMessage,
)
from signlink.router.dedup import DedupPolicy

if TYPE_CHECKING:
    from signlink.device.adapter import DeviceChannelAdapter
    from signlink.peer.session import PeerSessionManager

logger = logging.getLogger(__name__)

TOPIC_MESSAGES = "messages"
TOPIC_ALARM = "alarm"
TOPIC_STATUS = "status"
TOPIC_ERROR = "error"
TOPIC_HISTORY = "history"


class TransportRouter:
    """Single writer of history and dedup state."""

    def __init__(
        self,
        bus: EventBus,
        config: Optional[RouterConfig] = None,
        device: Optional["DeviceChannelAdapter"] = None,
        peer: Optional["PeerSessionManager"] = None,
    ):
        self._bus = bus
        self._config = config or RouterConfig()
        self._device = device
        self._peer = peer
        self._dedup = DedupPolicy(self._config.allow_duplicates)
        self._history: deque[UnifiedMessage] = deque(maxlen=self._config.history_size)
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    # ─── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._tasks:
            return
        if self._device is not None:
            self._tasks.append(asyncio.create_task(self._pump(self._device.events)))
        if self._peer is not None:
            self._tasks.append(asyncio.create_task(self._pump(self._peer.events)))
        self._tasks.append(asyncio.create_task(self._dispatch_loop()))
        logger.info("Transport router started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    async def _pump(self, source: asyncio.Queue) -> None:
        while True:
            self._inbox.put_nowait(await source.get())

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.apply(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Router failed to apply {event!r}: {e}", exc_info=True)

    # ─── Event application ───────────────────────────────────────

    async def apply(self, event: Any) -> None:
        """Apply one device or peer event."""
        if isinstance(event, DeviceLine):
            await self.ingest(event.text, Origin.DEVICE, timestamp=event.timestamp)
        elif isinstance(event, PeerData):
            # Controller input stands in for the glove
            await self.ingest(event.text, Origin.DEVICE, timestamp=event.timestamp)
        elif isinstance(event, DeviceStatus):
            await self._bus.publish(TOPIC_STATUS, TransportStatus("device", event.state))
        elif isinstance(event, PeerStatus):
            await self._bus.publish(
                TOPIC_STATUS,
                TransportStatus("peer", event.state, event.remote_id or None),
            )
        elif isinstance(event, DeviceError):
            await self._bus.publish(
                TOPIC_ERROR,
                {"transport": "device", "kind": event.kind.value, "message": event.message},
            )
        else:
            logger.warning(f"Router ignoring unknown event: {event!r}")

    async def ingest(
        self,
        text: str,
        origin: Origin = Origin.DEVICE,
        timestamp: Optional[float] = None,
    ) -> Optional[UnifiedMessage]:
        """
        Accept one line of text into the unified stream.

        ``timestamp`` is when the text was received; it defaults to now.
        Returns the created message, or None when it was suppressed.
        """
        text = text.strip()
        if not text:
            return None

        alarm = origin == Origin.DEVICE and text == self._config.sos_sentinel
        if origin == Origin.DEVICE:
            if not alarm and self._dedup.is_duplicate(text):
                logger.debug(f"Suppressed duplicate device text: {text!r}")
                return None
            self._dedup.observe(text)

        message = UnifiedMessage(
            text=text,
            origin=origin,
            alarm=alarm,
            timestamp=time.time() if timestamp is None else timestamp,
        )
        self._history.appendleft(message)
        await self._bus.publish(TOPIC_MESSAGES, message)
        if alarm:
            logger.warning("SOS sentinel received")
            await self._bus.publish(TOPIC_ALARM, message)
        return message

    # ─── Consumer surface ────────────────────────────────────────

    @property
    def history(self) -> list[UnifiedMessage]:
        """Accepted messages, newest first."""
        return list(self._history)

    @property
    def allow_duplicates(self) -> bool:
        return self._dedup.allow_duplicates

    @allow_duplicates.setter
    def allow_duplicates(self, value: bool) -> None:
        self._dedup.allow_duplicates = value

    @property
    def last_device_text(self) -> Optional[str]:
        return self._dedup.last

    async def clear_history(self) -> None:
        self._history.clear()
        self._dedup.reset()
        await self._bus.publish(TOPIC_HISTORY, {"cleared": True})

    def send(self, text: str) -> bool:
        """Forward text to the peer. False (silently) unless the connection is open."""
        if self._peer is None:
            return False
        return self._peer.send(text)

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        return self._bus.subscribe(topic, maxsize=maxsize)

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        self._bus.unsubscribe(topic, queue)

    def listen(self, queue: asyncio.Queue) -> AsyncGenerator[Any, None]:
        return self._bus.listen(queue)
