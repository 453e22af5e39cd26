"""In-memory channel and signaling providers for tests."""

import asyncio
from typing import Any, Optional

from signlink.core.errors import ChannelUnavailable
from signlink.device.channel import Channel, ChannelProvider, PlugEvent, PlugEventKind
from signlink.peer.signaling import (
    ConnectionClosed,
    ConnectionData,
    ConnectionOpened,
    EndpointDisconnected,
    EndpointError,
    EndpointOpen,
    IncomingConnection,
    PeerConnection,
    SignalingEndpoint,
)

_EOF = object()


async def settle(rounds: int = 20) -> None:
    """Let queued callbacks and dispatch loops run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    await asyncio.sleep(0.005)


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


# ─── Device side ──────────────────────────────────────────────


class FakeChannel(Channel):
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self.closed = False
        self.cancelled = False
        self._queue: asyncio.Queue = asyncio.Queue()

    async def chunks(self):
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def push(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def fail(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(_EOF)

    def cancel_read(self) -> None:
        self.cancelled = True
        self._queue.put_nowait(_EOF)

    async def close(self) -> None:
        self.closed = True


class FakeProvider(ChannelProvider):
    def __init__(self, present=(), authorized=()):
        self.present = list(present)
        self.authorized = set(authorized)
        self.open_error: Optional[Exception] = None
        self.opened: list[FakeChannel] = []
        self.loaded = False
        self._plug_events: asyncio.Queue = asyncio.Queue()

    async def load(self) -> None:
        self.loaded = True

    async def list_authorized(self) -> list[str]:
        return [p for p in self.present if p in self.authorized]

    async def request_channel(self) -> str:
        if not self.present:
            raise ChannelUnavailable("No serial device found")
        self.authorized.add(self.present[0])
        return self.present[0]

    async def open(self, channel_id: str) -> FakeChannel:
        if self.open_error is not None:
            raise self.open_error
        channel = FakeChannel(channel_id)
        self.opened.append(channel)
        return channel

    async def watch(self):
        while True:
            yield await self._plug_events.get()

    def plug(self, channel_id: str) -> None:
        if channel_id not in self.present:
            self.present.append(channel_id)
        self._plug_events.put_nowait(PlugEvent(PlugEventKind.ADDED, channel_id))

    def unplug(self, channel_id: str) -> None:
        if channel_id in self.present:
            self.present.remove(channel_id)
        self._plug_events.put_nowait(PlugEvent(PlugEventKind.REMOVED, channel_id))

    @property
    def last(self) -> FakeChannel:
        return self.opened[-1]


# ─── Peer side ────────────────────────────────────────────────


class FakeConnection(PeerConnection):
    def __init__(self, peer: str, sink: asyncio.Queue):
        self.peer = peer
        self.sink = sink
        self.sent: list[Any] = []
        self.closed = False
        self._open = False

    @property
    def open(self) -> bool:
        return self._open and not self.closed

    def send(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sink.put_nowait(ConnectionClosed(self))

    # Driven by tests

    def accept(self) -> None:
        self._open = True
        self.sink.put_nowait(ConnectionOpened(self))

    def deliver(self, data: Any) -> None:
        self.sink.put_nowait(ConnectionData(self, data))

    def drop(self) -> None:
        """The remote side went away."""
        self.closed = True
        self.sink.put_nowait(ConnectionClosed(self))


class FakeEndpoint(SignalingEndpoint):
    def __init__(self, peer_id: Optional[str], sink: asyncio.Queue):
        self.id = peer_id
        self.requested_id = peer_id
        self.sink = sink
        self.started = 0
        self.reconnects = 0
        self.attempts: list[FakeConnection] = []
        self._open = False
        self._disconnected = False
        self._destroyed = False

    @property
    def open(self) -> bool:
        return self._open

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def start(self) -> None:
        self.started += 1

    async def reconnect(self) -> None:
        self.reconnects += 1
        self._disconnected = False

    def connect(self, peer_id: str) -> FakeConnection:
        connection = FakeConnection(peer_id, self.sink)
        self.attempts.append(connection)
        return connection

    async def destroy(self) -> None:
        self._destroyed = True
        self._open = False

    # Driven by tests

    def ready(self, assigned_id: Optional[str] = None) -> None:
        self.id = self.id or assigned_id or "anon-1"
        self._open = True
        self.sink.put_nowait(EndpointOpen(self, self.id))

    def collide(self) -> None:
        self.sink.put_nowait(EndpointError(self, "unavailable-id", f"ID {self.id} is taken"))

    def lose_signaling(self) -> None:
        self._open = False
        self._disconnected = True
        self.sink.put_nowait(EndpointDisconnected(self))

    def incoming(self, peer: str) -> FakeConnection:
        connection = FakeConnection(peer, self.sink)
        self.sink.put_nowait(IncomingConnection(self, connection))
        return connection


class FakeSignaling:
    """Endpoint factory that records every endpoint it builds."""

    def __init__(self):
        self.endpoints: list[FakeEndpoint] = []

    def __call__(self, peer_id: Optional[str], sink: asyncio.Queue) -> FakeEndpoint:
        endpoint = FakeEndpoint(peer_id, sink)
        self.endpoints.append(endpoint)
        return endpoint

    @property
    def last(self) -> FakeEndpoint:
        return self.endpoints[-1]
