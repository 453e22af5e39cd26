"""
SignLink runtime: builds every component once and wires them together.

    StateStore ─► HostIdentityStore ─► PeerSessionManager ─┐
    SerialChannelProvider ─► DeviceChannelAdapter ─────────┼─► TransportRouter ─► EventBus
                                                           ┘

The role is decided here, once: a target identity makes this node a client
(controller), otherwise it hosts under its persisted identity.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from signlink.core.config import SignLinkConfig
from signlink.core.errors import SignLinkError
from signlink.core.event_bus import EventBus
from signlink.device.adapter import DeviceChannelAdapter
from signlink.device.channel import ChannelProvider
from signlink.device.serial_port import SerialChannelProvider
from signlink.models import PeerRole
from signlink.peer.identity import HostIdentityStore
from signlink.peer.peerjs import peerjs_endpoint_factory
from signlink.peer.session import PeerSessionManager
from signlink.peer.signaling import EndpointFactory
from signlink.router.router import TransportRouter
from signlink.storage.store import StateStore

logger = logging.getLogger(__name__)


def _error_dict(error: Optional[SignLinkError]) -> Optional[dict[str, str]]:
    if error is None or error.kind is None:
        return None
    return {"kind": error.kind.value, "message": error.message}


class RoleConflict(Exception):
    """The requested peer operation does not fit this node's role."""


class SignLinkRuntime:
    """Owns the component graph for one process."""

    def __init__(
        self,
        config: Optional[SignLinkConfig] = None,
        *,
        target: Optional[str] = None,
        use_device: bool = True,
        provider: Optional[ChannelProvider] = None,
        endpoint_factory: Optional[EndpointFactory] = None,
        store: Optional[StateStore] = None,
    ):
        self.config = config or SignLinkConfig()
        self.target = target or None
        self.host_id: Optional[str] = None

        self.bus = EventBus()
        self.store = store or StateStore(self.config.storage.state_path)

        if provider is None and use_device:
            provider = SerialChannelProvider(self.config.serial, self.store)
        self._provider = provider
        self.device: Optional[DeviceChannelAdapter] = None
        if provider is not None:
            self.device = DeviceChannelAdapter(
                provider,
                max_line_length=self.config.serial.max_line_length,
                disconnect_grace=self.config.serial.disconnect_grace,
            )

        peer_config = self.config.peer
        self.peer = PeerSessionManager(
            endpoint_factory or peerjs_endpoint_factory(peer_config),
            prefix=peer_config.prefix,
            retry_interval=peer_config.retry_interval,
            collision_backoff=peer_config.collision_backoff,
        )
        self.router = TransportRouter(
            self.bus, self.config.router, device=self.device, peer=self.peer
        )
        self._started = False

    @property
    def role(self) -> PeerRole:
        return PeerRole.CLIENT if self.target else PeerRole.HOST

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self.store.start()
        await self.router.start()
        await self.peer.start()

        if self._provider is not None:
            await self._provider.load()
        if self.device is not None:
            await self.device.start()

        if self.role == PeerRole.CLIENT:
            logger.info(f"Starting as client for {self.target}", extra={"role": "client"})
            await self.peer.connect_to(self.target)
        else:
            self.host_id = await HostIdentityStore(self.store).load_or_create()
            logger.info(f"Starting as host {self.host_id}", extra={"role": "host"})
            await self.peer.start_hosting(self.host_id)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        if self.device is not None:
            await self.device.stop()
        await self.peer.stop()
        await self.router.stop()
        await self.bus.close()
        await self.store.stop()
        logger.info("SignLink stopped")

    async def connect_peer(self, target: str) -> None:
        """Point a client at a (new) host identity."""
        if self.role == PeerRole.HOST:
            raise RoleConflict("A host accepts connections; start with a target to connect out")
        if target != self.target:
            await self.peer.disconnect()
        self.target = target
        await self.peer.connect_to(target)

    async def disconnect_peer(self) -> None:
        await self.peer.disconnect()

    def status(self) -> dict[str, Any]:
        device: dict[str, Any] = {"enabled": self.device is not None}
        if self.device is not None:
            error = self.device.error
            device.update(
                state=self.device.state.value,
                channel=self.device.channel_id,
                error=_error_dict(error),
            )
        return {
            "device": device,
            "peer": {
                "role": self.role.value,
                "state": self.peer.status.value,
                "my_id": self.peer.current_identity or self.host_id,
                "remote_id": self.peer.remote_id or None,
                "target": self.target,
                "error": _error_dict(self.peer.last_error),
            },
            "allow_duplicates": self.router.allow_duplicates,
        }
