"""
Serial channel provider (pyserial).

pyserial is blocking, so every read/open/close runs in the default executor.
Reads use a short timeout so a cancelled channel notices promptly even on
platforms where Serial.cancel_read() is unavailable.

"Authorised" ports mirror the browser model the glove firmware was built
for: a port becomes authorised the first time the user explicitly connects
to it, and only authorised ports are reopened automatically on plug-in.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

import serial
from serial.tools import list_ports

from signlink.core.config import SerialConfig
from signlink.core.errors import ChannelUnavailable, DeviceLost
from signlink.device.channel import Channel, ChannelProvider, PlugEvent, PlugEventKind
from signlink.storage.store import StateStore

logger = logging.getLogger(__name__)

AUTHORIZED_PORTS_KEY = "authorized_ports"


def _present_ports() -> set[str]:
    return {port.device for port in list_ports.comports()}


class SerialChannel(Channel):
    """An open pyserial port."""

    def __init__(
        self,
        port: serial.Serial,
        channel_id: str,
        port_present: Callable[[str], bool],
    ):
        self._serial = port
        self.channel_id = channel_id
        self._port_present = port_present
        self._closing = False

    def _read_once(self) -> bytes:
        # Block for at most the port timeout; grab everything already buffered
        return self._serial.read(self._serial.in_waiting or 1)

    async def chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        while not self._closing:
            try:
                data = await loop.run_in_executor(None, self._read_once)
            except (serial.SerialException, OSError, TypeError) as e:
                # TypeError: pyserial reading from a port closed under it
                if self._closing:
                    return
                if not self._port_present(self.channel_id):
                    raise DeviceLost(f"{self.channel_id} was removed") from e
                raise OSError(f"Serial read failed on {self.channel_id}: {e}") from e
            if data:
                yield data

    def cancel_read(self) -> None:
        self._closing = True
        cancel = getattr(self._serial, "cancel_read", None)
        if cancel is None:
            return
        try:
            cancel()
        except (serial.SerialException, OSError) as e:
            logger.debug(f"cancel_read on {self.channel_id} failed: {e}")

    async def close(self) -> None:
        self._closing = True
        if not self._serial.is_open:
            return
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._serial.close)
        except (serial.SerialException, OSError) as e:
            logger.debug(f"Error closing {self.channel_id}: {e}")

    def __repr__(self) -> str:
        return f"<SerialChannel {self.channel_id}>"


class SerialChannelProvider(ChannelProvider):
    """Enumerates and opens local serial ports."""

    def __init__(self, config: SerialConfig, store: Optional[StateStore] = None):
        self._config = config
        self._store = store
        self._authorized: set[str] = set()
        if config.port:
            self._authorized.add(config.port)

    async def load(self) -> None:
        """Restore the authorised port list from the state store."""
        if self._store is None:
            return
        saved = await self._store.get(AUTHORIZED_PORTS_KEY, [])
        self._authorized.update(saved)
        logger.debug(f"Authorised serial ports: {sorted(self._authorized)}")

    async def _authorize(self, channel_id: str) -> None:
        if channel_id in self._authorized:
            return
        self._authorized.add(channel_id)
        if self._store is not None:
            await self._store.set(AUTHORIZED_PORTS_KEY, sorted(self._authorized))

    async def _scan(self) -> set[str]:
        return await asyncio.get_running_loop().run_in_executor(None, _present_ports)

    async def list_authorized(self) -> list[str]:
        present = await self._scan()
        return sorted(present & self._authorized)

    async def request_channel(self) -> str:
        present = await self._scan()
        if self._config.port:
            if self._config.port not in present:
                raise ChannelUnavailable(f"Serial port {self._config.port} not present")
            channel_id = self._config.port
        else:
            if not present:
                raise ChannelUnavailable("No serial device found")
            # Prefer a port the user already approved
            known = sorted(present & self._authorized)
            channel_id = known[0] if known else sorted(present)[0]
        await self._authorize(channel_id)
        return channel_id

    async def open(self, channel_id: str) -> SerialChannel:
        def _open() -> serial.Serial:
            return serial.Serial(
                port=channel_id,
                baudrate=self._config.baud_rate,
                timeout=self._config.read_timeout,
            )

        try:
            port = await asyncio.get_running_loop().run_in_executor(None, _open)
        except (serial.SerialException, OSError, ValueError) as e:
            raise ChannelUnavailable(f"Could not open {channel_id}: {e}") from e

        logger.info(f"Opened serial port {channel_id} @ {self._config.baud_rate} baud")
        return SerialChannel(port, channel_id, port_present=lambda cid: cid in _present_ports())

    async def watch(self) -> AsyncIterator[PlugEvent]:
        known = await self._scan()
        while True:
            await asyncio.sleep(self._config.hotplug_interval)
            try:
                current = await self._scan()
            except OSError as e:
                logger.debug(f"Serial port scan failed: {e}")
                continue
            for channel_id in sorted(current - known):
                yield PlugEvent(PlugEventKind.ADDED, channel_id)
            for channel_id in sorted(known - current):
                yield PlugEvent(PlugEventKind.REMOVED, channel_id)
            known = current
