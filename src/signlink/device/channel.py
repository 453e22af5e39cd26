"""
Device channel interfaces.

A channel is a byte-oriented duplex connection to the glove. The adapter
only ever talks to these interfaces; the serial implementation lives in
``signlink.device.serial_port`` and tests substitute in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator


class PlugEventKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class PlugEvent:
    """A device became available or went away."""

    kind: PlugEventKind
    channel_id: str


class Channel(ABC):
    """An open byte channel."""

    #: Stable identifier (e.g. "/dev/ttyUSB0"), compared against plug events.
    channel_id: str = ""

    @abstractmethod
    def chunks(self) -> AsyncIterator[bytes]:
        """
        Yield byte chunks as they arrive.

        Ends normally on end-of-stream or after cancel_read()/close().
        Raises DeviceLost when the device disappeared underneath the read,
        and OSError for any other I/O failure.
        """
        ...

    @abstractmethod
    def cancel_read(self) -> None:
        """Abort a pending read so chunks() returns promptly."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the channel. Safe to call twice."""
        ...


class ChannelProvider(ABC):
    """Enumerates, selects and opens device channels."""

    async def load(self) -> None:
        """Restore persisted provider state. Called once before first use."""
        return None

    @abstractmethod
    async def list_authorized(self) -> list[str]:
        """Channel ids the user has already approved, currently present."""
        ...

    @abstractmethod
    async def request_channel(self) -> str:
        """
        Select a channel on explicit user request.

        Raises ChannelUnavailable when none is present or the selection is
        cancelled. A selected channel becomes authorised for auto-reconnect.
        """
        ...

    @abstractmethod
    async def open(self, channel_id: str) -> Channel:
        """Open a channel. Raises ChannelUnavailable if it cannot be opened."""
        ...

    @abstractmethod
    def watch(self) -> AsyncIterator[PlugEvent]:
        """Yield plug/unplug notifications until cancelled."""
        ...
