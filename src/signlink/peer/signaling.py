"""
Peer signaling interfaces.

An endpoint is our registration with a rendezvous/signaling server; a
connection is one data channel to one remote peer. Neither calls back into
the session manager. Instead they put tagged events on a ``sink`` queue
owned by the manager, and every event names the object it came from so the
manager can drop events from endpoints or connections it has replaced.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

# Error kinds reported by endpoints (PeerJS names)
UNAVAILABLE_ID = "unavailable-id"
PEER_UNAVAILABLE = "peer-unavailable"
INVALID_KEY = "invalid-key"
SERVER_ERROR = "server-error"
NETWORK = "network"


class PeerConnection(ABC):
    """One data channel to one remote peer."""

    #: Full (prefixed) id of the remote peer.
    peer: str = ""

    @property
    @abstractmethod
    def open(self) -> bool:
        """True while data can be sent."""
        ...

    @abstractmethod
    def send(self, data: Any) -> None:
        """Send a JSON-serialisable payload. Only valid while open."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call twice."""
        ...


class SignalingEndpoint(ABC):
    """Our presence on the signaling server."""

    #: Registered id (prefixed), known once the endpoint is open.
    id: Optional[str] = None

    @property
    @abstractmethod
    def open(self) -> bool:
        """Registered and ready to place/accept connections."""
        ...

    @property
    @abstractmethod
    def disconnected(self) -> bool:
        """Lost the signaling server but can reconnect with the same id."""
        ...

    @property
    @abstractmethod
    def destroyed(self) -> bool:
        """Permanently torn down; create a new endpoint instead."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Begin registering. Must not block on the network; progress arrives as events."""
        ...

    @abstractmethod
    async def reconnect(self) -> None:
        """Re-register with the same id after a signaling disconnect."""
        ...

    @abstractmethod
    def connect(self, peer_id: str) -> PeerConnection:
        """Start an outbound connection to a (prefixed) peer id."""
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Close every connection and leave the signaling server."""
        ...


#: Builds an endpoint registering ``peer_id`` (None = server-assigned id)
#: and reporting to ``sink``.
EndpointFactory = Callable[[Optional[str], "asyncio.Queue[Any]"], SignalingEndpoint]


# ─── Events (endpoint/connection → manager) ──────────────────


@dataclass(frozen=True)
class EndpointOpen:
    endpoint: SignalingEndpoint
    id: str


@dataclass(frozen=True)
class EndpointDisconnected:
    endpoint: SignalingEndpoint


@dataclass(frozen=True)
class EndpointError:
    endpoint: SignalingEndpoint
    kind: str
    message: str = ""


@dataclass(frozen=True)
class IncomingConnection:
    endpoint: SignalingEndpoint
    connection: PeerConnection


@dataclass(frozen=True)
class ConnectionOpened:
    connection: PeerConnection


@dataclass(frozen=True)
class ConnectionData:
    connection: PeerConnection
    data: Any


@dataclass(frozen=True)
class ConnectionClosed:
    connection: PeerConnection


@dataclass(frozen=True)
class ConnectionFailed:
    connection: PeerConnection
    message: str = ""
