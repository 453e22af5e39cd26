"""
Peer Session Manager: one logical peer-to-peer session (host or client).

Host:
  start_hosting("4821") registers as ``prefix + "4821"``. If the id is taken
  (a previous run's registration has not expired yet) the endpoint is
  destroyed and the *same* id is registered again after a fixed backoff.
  An inbound connection always replaces the current one.

Client:
  connect_to("4821") records the target (the retry context) and connects
  once the endpoint is ready. A repair loop re-evaluates every
  ``retry_interval`` seconds while the target is set:

    connection open                         → nothing to do
    endpoint lost signaling (not destroyed) → endpoint.reconnect()
    no endpoint                             → create one
    otherwise                               → new outbound attempt

  The retry context, not the liveness of any transport object, decides
  whether we should be connecting.

Endpoints and connections report through a single queue consumed by one
dispatch loop; events from replaced objects are dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional

from signlink.core.errors import (
    IdentityCollision,
    PeerConnectionError,
    SignalingDisconnected,
    SignLinkError,
)
from signlink.models import ConnectionState, PeerData, PeerEvent, PeerRole, PeerStatus
from signlink.peer.identity import strip_prefix
from signlink.peer.signaling import (
    UNAVAILABLE_ID,
    ConnectionClosed,
    ConnectionData,
    ConnectionFailed,
    ConnectionOpened,
    EndpointDisconnected,
    EndpointError,
    EndpointFactory,
    EndpointOpen,
    IncomingConnection,
    PeerConnection,
    SignalingEndpoint,
)

logger = logging.getLogger(__name__)


class PeerSessionManager:
    """Owns the signaling endpoint, the current connection and the repair loop."""

    def __init__(
        self,
        endpoint_factory: EndpointFactory,
        *,
        prefix: str = "sg-v2-",
        retry_interval: float = 2.0,
        collision_backoff: float = 1.5,
        events: Optional[asyncio.Queue] = None,
    ):
        self._factory = endpoint_factory
        self._prefix = prefix
        self._retry_interval = retry_interval
        self._collision_backoff = collision_backoff

        self.events: asyncio.Queue[PeerEvent] = events or asyncio.Queue()
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

        self.role: Optional[PeerRole] = None
        self._status = ConnectionState.DISCONNECTED
        self._last_error: Optional[SignLinkError] = None
        self._my_id = ""
        self._remote_id = ""
        self._host_id: Optional[str] = None
        self._target: Optional[str] = None  # client retry context

        self._endpoint: Optional[SignalingEndpoint] = None
        self._connection: Optional[PeerConnection] = None

        self._dispatch_task: Optional[asyncio.Task] = None
        self._repair_task: Optional[asyncio.Task] = None
        self._rehost_task: Optional[asyncio.Task] = None

    # ─── Public surface ──────────────────────────────────────────

    @property
    def status(self) -> ConnectionState:
        return self._status

    @property
    def current_identity(self) -> str:
        """Our own id without the namespace prefix ("" until registered)."""
        return self._my_id

    @property
    def remote_id(self) -> str:
        return self._remote_id

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def last_error(self) -> Optional[SignLinkError]:
        """Most recent recovered peer failure; cleared when a connection opens."""
        return self._last_error

    @property
    def is_open(self) -> bool:
        return self._connection is not None and self._connection.open

    @property
    def endpoint(self) -> Optional[SignalingEndpoint]:
        return self._endpoint

    @property
    def connection(self) -> Optional[PeerConnection]:
        return self._connection

    async def start(self) -> None:
        """Start dispatching endpoint/connection events."""
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def stop(self) -> None:
        """Disconnect, destroy the endpoint and stop every task."""
        await self.disconnect()
        self._host_id = None
        await self._cancel(self._rehost_task)
        self._rehost_task = None
        endpoint, self._endpoint = self._endpoint, None
        if endpoint is not None and not endpoint.destroyed:
            await endpoint.destroy()
        await self._cancel(self._dispatch_task)
        self._dispatch_task = None

    async def start_hosting(self, identity: str) -> None:
        """Register under the persisted host identity and accept inbound connections."""
        self.role = PeerRole.HOST
        self._host_id = identity
        self._my_id = identity
        await self._initialize_endpoint(self._prefix + identity)

    async def connect_to(self, identity: str) -> None:
        """Connect to a host, and keep trying until disconnect()."""
        if not identity:
            return
        self.role = PeerRole.CLIENT
        self._target = identity
        self._remote_id = identity
        self._set_status(ConnectionState.CONNECTING)

        endpoint = self._endpoint
        if endpoint is not None and not endpoint.destroyed:
            # Deferred to EndpointOpen if signaling is not ready yet
            await self._attempt_connection(identity)
        else:
            self._endpoint = None
            await self._initialize_endpoint(None)

        if self._repair_task is None:
            self._repair_task = asyncio.create_task(self._repair_loop())

    async def disconnect(self) -> None:
        """Drop the retry context and close the connection. Idempotent."""
        self._target = None
        await self._cancel(self._repair_task)
        self._repair_task = None
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
        self._set_status(ConnectionState.DISCONNECTED)

    def send(self, text: str) -> bool:
        """Fire-and-forget; returns False (and sends nothing) unless open."""
        connection = self._connection
        if connection is None or not connection.open:
            return False
        try:
            connection.send({"text": text})
        except Exception as e:
            logger.warning(f"Peer send failed: {e}")
            return False
        return True

    async def repair(self) -> None:
        """One repair-loop tick."""
        target = self._target
        if target is None or self.is_open:
            return

        endpoint = self._endpoint
        logger.debug(f"Status check: not connected to {target}, repairing")
        if endpoint is not None and endpoint.disconnected and not endpoint.destroyed:
            await endpoint.reconnect()
        elif endpoint is None or endpoint.destroyed:
            self._endpoint = None
            await self._initialize_endpoint(None)
        else:
            await self._attempt_connection(target)

    # ─── Endpoint / connection management ────────────────────────

    async def _initialize_endpoint(self, peer_id: Optional[str]) -> None:
        if self._endpoint is not None:
            return
        logger.info(f"Initialising signaling endpoint: {peer_id or 'auto'}")
        endpoint = self._factory(peer_id, self._inbox)
        self._endpoint = endpoint
        await endpoint.start()

    async def _attempt_connection(self, target: str) -> None:
        endpoint = self._endpoint
        if endpoint is None or endpoint.destroyed or not endpoint.open:
            return

        full_id = self._prefix + target
        logger.info(f"Connecting to {full_id}", extra={"transport": "peer", "peer_id": full_id})

        old, self._connection = self._connection, None
        if old is not None:
            await old.close()

        try:
            connection = endpoint.connect(full_id)
        except Exception as e:
            logger.error(f"Connect to {full_id} failed: {e}", exc_info=True)
            return
        self._connection = connection

    async def _accept(self, connection: PeerConnection) -> None:
        logger.info(f"Incoming connection from {connection.peer}")
        old, self._connection = self._connection, connection
        if old is not None and old is not connection:
            await old.close()

    async def _rehost_after_backoff(self, identity: str) -> None:
        await asyncio.sleep(self._collision_backoff)
        if self._host_id != identity or self._endpoint is not None:
            return
        await self._initialize_endpoint(self._prefix + identity)

    # ─── Event dispatch ──────────────────────────────────────────

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling peer event {event!r}: {e}", exc_info=True)

    async def handle(self, event: Any) -> None:
        """Apply one endpoint/connection event."""
        if isinstance(event, (EndpointOpen, EndpointDisconnected, EndpointError, IncomingConnection)):
            if event.endpoint is not self._endpoint:
                logger.debug(f"Ignoring event from replaced endpoint: {type(event).__name__}")
                if isinstance(event, IncomingConnection):
                    await event.connection.close()
                return
            await self._handle_endpoint_event(event)
            return

        if isinstance(event, (ConnectionOpened, ConnectionData, ConnectionClosed, ConnectionFailed)):
            if event.connection is not self._connection:
                logger.debug(f"Ignoring event from stale connection: {type(event).__name__}")
                return
            self._handle_connection_event(event)
            return

        logger.warning(f"Unknown peer event: {event!r}")

    async def _handle_endpoint_event(self, event: Any) -> None:
        endpoint = event.endpoint

        if isinstance(event, EndpointOpen):
            logger.info(f"Signaling ready. My id: {event.id}", extra={"transport": "peer"})
            if self._host_id is None:
                self._my_id = strip_prefix(event.id, self._prefix)
            if self._target:
                await self._attempt_connection(self._target)

        elif isinstance(event, IncomingConnection):
            await self._accept(event.connection)

        elif isinstance(event, EndpointDisconnected):
            logger.warning("Disconnected from signaling server, reconnecting")
            self._record(SignalingDisconnected("Lost the signaling server"))
            if not endpoint.destroyed:
                await endpoint.reconnect()

        elif isinstance(event, EndpointError):
            if event.kind == UNAVAILABLE_ID and self._host_id is not None:
                self._record(IdentityCollision(f"Identity {self._host_id} is already registered"))
                logger.warning(
                    f"Identity {self._host_id} is taken, retrying in {self._collision_backoff}s"
                )
                self._endpoint = None
                await endpoint.destroy()
                await self._cancel(self._rehost_task)
                self._rehost_task = asyncio.create_task(
                    self._rehost_after_backoff(self._host_id)
                )
            else:
                logger.error(f"Signaling error ({event.kind}): {event.message}")
                self._record(PeerConnectionError(f"{event.kind}: {event.message}"))

    def _handle_connection_event(self, event: Any) -> None:
        connection = event.connection

        if isinstance(event, ConnectionOpened):
            self._remote_id = strip_prefix(connection.peer, self._prefix)
            logger.info(
                f"Channel open with {connection.peer}",
                extra={"transport": "peer", "peer_id": connection.peer},
            )
            self._last_error = None
            self._set_status(ConnectionState.CONNECTED, force=True)

        elif isinstance(event, ConnectionData):
            data = event.data
            text = data.get("text") if isinstance(data, dict) else None
            if isinstance(text, str) and text:
                self.events.put_nowait(PeerData(text, peer_id=self._remote_id))
            else:
                logger.debug(f"Ignoring peer payload without text: {data!r}")

        elif isinstance(event, ConnectionClosed):
            logger.info("Peer connection closed", extra={"transport": "peer"})
            self._connection = None
            self._set_status(ConnectionState.DISCONNECTED)

        elif isinstance(event, ConnectionFailed):
            logger.error(f"Peer connection error: {event.message}")
            self._record(PeerConnectionError(event.message))
            self._set_status(ConnectionState.DISCONNECTED)

    def _record(self, error: SignLinkError) -> None:
        # Recovered internally; kept for status reporting only
        self._last_error = error

    def _set_status(self, state: ConnectionState, force: bool = False) -> None:
        if state == self._status and not force:
            return
        self._status = state
        self.events.put_nowait(PeerStatus(state, remote_id=self._remote_id))

    # ─── Repair loop ─────────────────────────────────────────────

    async def _repair_loop(self) -> None:
        while self._target is not None:
            await asyncio.sleep(self._retry_interval)
            try:
                await self.repair()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Repair tick failed: {e}", exc_info=True)

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
