"""
Device Channel Adapter: owns one device channel and its read loop.

States: disconnected → connecting → connected → disconnected.

Lifecycle:
  start()       auto-connect to an authorised channel, then watch plug events
  connect()     explicit user connect (may select a new channel)
  disconnect()  idempotent teardown; the read loop has released the channel
                when it returns
  stop()        disconnect and stop watching

Every open channel gets a fresh LineFramer. Each completed line becomes a
DeviceLine on ``events``. Events from a channel that has since been replaced
are dropped by comparing the channel object, never assumed impossible.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from signlink.core.errors import ChannelUnavailable, DeviceLost
from signlink.device.channel import Channel, ChannelProvider, PlugEvent, PlugEventKind
from signlink.device.framer import LineFramer
from signlink.models import (
    ConnectionState,
    DeviceError,
    DeviceEvent,
    DeviceLine,
    DeviceStatus,
    ErrorKind,
)

logger = logging.getLogger(__name__)


class DeviceChannelAdapter:
    """Bridges a ChannelProvider to a queue of DeviceEvent values."""

    def __init__(
        self,
        provider: ChannelProvider,
        *,
        max_line_length: Optional[int] = 1024,
        disconnect_grace: float = 0.1,
        events: Optional[asyncio.Queue] = None,
    ):
        self._provider = provider
        self._max_line_length = max_line_length
        self._disconnect_grace = disconnect_grace
        self.events: asyncio.Queue[DeviceEvent] = events or asyncio.Queue()

        self._state = ConnectionState.DISCONNECTED
        self._channel: Optional[Channel] = None
        self._read_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._error: Optional[DeviceError] = None
        self._lock = asyncio.Lock()

    # ─── Public surface ──────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def channel_id(self) -> Optional[str]:
        return self._channel.channel_id if self._channel else None

    @property
    def error(self) -> Optional[DeviceError]:
        """The last user-visible error, until dismissed or reconnected."""
        return self._error

    def clear_error(self) -> None:
        self._error = None

    async def start(self) -> None:
        """Reuse an authorised channel if one is plugged in, then watch plug events."""
        await self.auto_connect()
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch_loop())

    async def stop(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
        await self.disconnect()

    async def connect(self) -> bool:
        """
        Explicit, user-initiated connect.

        Returns False without surfacing anything when no channel is present or
        the selection was cancelled. A channel that is found but will not open
        surfaces DeviceError(channel_unavailable).
        """
        async with self._lock:
            if self._state != ConnectionState.DISCONNECTED:
                return self.is_connected

            self._error = None
            self._set_state(ConnectionState.CONNECTING)
            try:
                channel_id = await self._provider.request_channel()
            except ChannelUnavailable as e:
                logger.info(f"No device channel selected: {e.message}")
                self._set_state(ConnectionState.DISCONNECTED)
                return False

            try:
                channel = await self._provider.open(channel_id)
            except ChannelUnavailable as e:
                logger.warning(f"Device connect failed: {e.message}")
                self._set_state(ConnectionState.DISCONNECTED)
                self._surface(ErrorKind.CHANNEL_UNAVAILABLE, f"Connection failed: {e.message}")
                return False

            self._attach(channel)
            return True

    async def auto_connect(self) -> bool:
        """
        Opportunistic connect to an already-authorised channel.

        Never prompts and never surfaces failures: they are only logged.
        """
        async with self._lock:
            if self._state != ConnectionState.DISCONNECTED:
                return False
            try:
                authorized = await self._provider.list_authorized()
                if not authorized:
                    return False
                logger.info(f"Auto-connecting to known device {authorized[0]}")
                self._set_state(ConnectionState.CONNECTING)
                channel = await self._provider.open(authorized[0])
            except (ChannelUnavailable, OSError) as e:
                logger.warning(f"Auto-connect failed: {e}")
                self._set_state(ConnectionState.DISCONNECTED)
                return False

            self._attach(channel)
            return True

    async def disconnect(self) -> None:
        """Stop reading and release the channel. Safe from any state, any number of times."""
        channel, task = self._channel, self._read_task
        self._channel = None
        self._read_task = None

        if channel is not None:
            channel.cancel_read()
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self._disconnect_grace)
            except asyncio.TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if channel is not None:
            await channel.close()
            logger.info(
                f"Device {channel.channel_id} disconnected",
                extra={"transport": "device", "channel": channel.channel_id},
            )

        self._set_state(ConnectionState.DISCONNECTED)

    # ─── Internals ───────────────────────────────────────────────

    def _attach(self, channel: Channel) -> None:
        self._channel = channel
        self._error = None
        self._set_state(ConnectionState.CONNECTED)
        self._read_task = asyncio.create_task(self._read_loop(channel))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self.events.put_nowait(DeviceStatus(state))

    def _surface(self, kind: ErrorKind, message: str) -> None:
        self._error = DeviceError(kind, message)
        self.events.put_nowait(self._error)

    def _is_current(self, channel: Channel) -> bool:
        return self._channel is channel

    async def _read_loop(self, channel: Channel) -> None:
        """Feed every chunk to a fresh framer and publish complete lines."""
        framer = LineFramer(max_line_length=self._max_line_length)
        try:
            async for chunk in channel.chunks():
                if not self._is_current(channel):
                    return
                for line in framer.feed(chunk):
                    self.events.put_nowait(DeviceLine(line))
            # End of stream: nothing more will terminate the last line
            if self._is_current(channel):
                tail = framer.flush()
                if tail is not None:
                    self.events.put_nowait(DeviceLine(tail))
        except asyncio.CancelledError:
            raise
        except DeviceLost as e:
            if self._is_current(channel):
                logger.info(f"Device lost during read: {e.message}", extra={"transport": "device"})
                await self._release(channel)
                self._surface(ErrorKind.DEVICE_LOST, "Device disconnected")
            return
        except OSError as e:
            if self._is_current(channel):
                logger.error(f"Serial read error: {e}")
        if self._is_current(channel):
            await self._release(channel)

    async def _release(self, channel: Channel) -> None:
        """Tear down a channel whose read loop ended on its own."""
        self._channel = None
        self._read_task = None
        await channel.close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _watch_loop(self) -> None:
        try:
            async for event in self._provider.watch():
                await self._handle_plug_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Device watcher stopped: {e}", exc_info=True)

    async def _handle_plug_event(self, event: PlugEvent) -> None:
        if event.kind == PlugEventKind.ADDED:
            logger.info(
                f"Device plugged in: {event.channel_id}",
                extra={"transport": "device", "channel": event.channel_id},
            )
            if self._state == ConnectionState.DISCONNECTED:
                await self.auto_connect()
            return

        channel = self._channel
        if channel is None or channel.channel_id != event.channel_id:
            return
        logger.info(
            f"Device unplugged: {event.channel_id}",
            extra={"transport": "device", "channel": event.channel_id},
        )
        await self.disconnect()
        self._surface(ErrorKind.DEVICE_LOST, "Device disconnected")
