"""
Message and event types shared by the transports and the router.

Transports never talk to consumers directly: the device adapter emits
DeviceEvent values, the peer session manager emits PeerEvent values, and the
router turns both into immutable UnifiedMessage values.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional, Union


class ConnectionState(str, Enum):
    """Connection state of a single transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Origin(str, Enum):
    """Where a unified message came from."""

    DEVICE = "device"  # glove over serial, or the remote controller
    USER = "user"  # local voice input


class PeerRole(str, Enum):
    HOST = "host"
    CLIENT = "client"


class ErrorKind(str, Enum):
    CHANNEL_UNAVAILABLE = "channel_unavailable"
    DEVICE_LOST = "device_lost"
    IDENTITY_COLLISION = "identity_collision"
    SIGNALING_DISCONNECTED = "signaling_disconnected"
    PEER_CONNECTION_ERROR = "peer_connection_error"


# ─── Device events ────────────────────────────────────────────


@dataclass(frozen=True)
class DeviceLine:
    """One complete, trimmed, non-empty line read from the device."""

    text: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DeviceStatus:
    state: ConnectionState


@dataclass(frozen=True)
class DeviceError:
    """A failure the user should see (and may dismiss)."""

    kind: ErrorKind
    message: str = ""


DeviceEvent = Union[DeviceLine, DeviceStatus, DeviceError]


# ─── Peer events ──────────────────────────────────────────────


@dataclass(frozen=True)
class PeerData:
    """Text received from the remote peer."""

    text: str
    peer_id: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PeerStatus:
    state: ConnectionState
    remote_id: str = ""


PeerEvent = Union[PeerData, PeerStatus]


# ─── Unified stream ───────────────────────────────────────────


@dataclass(frozen=True)
class UnifiedMessage:
    """
    One entry of the unified sign stream.

    Created by the router and never mutated afterwards. ``alarm`` marks the
    emergency sentinel; such entries are shown (flagged) but never spoken.
    """

    text: str
    origin: Origin = Origin.DEVICE
    alarm: bool = False
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def speakable(self) -> bool:
        """Whether a text-to-speech consumer should read this aloud."""
        return self.origin == Origin.DEVICE and not self.alarm

    def to_dict(self) -> dict:
        data = asdict(self)
        data["origin"] = self.origin.value
        data["speakable"] = self.speakable
        return data


@dataclass(frozen=True)
class TransportStatus:
    """Published on the ``status`` topic whenever a transport changes state."""

    transport: str  # "device" | "peer"
    state: ConnectionState
    remote_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "transport": self.transport,
            "state": self.state.value,
            "remote_id": self.remote_id,
        }
