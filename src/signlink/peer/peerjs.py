"""
PeerJS-compatible signaling endpoint and data connections (aiortc).

Talks the PeerJS server protocol so a SignLink node can reach (and be
reached by) the browser build of the app:

  GET  {http_base}{key}/id          → server-assigned id (client role)
  WS   {ws_base}peerjs?key&id&token → OPEN | ID-TAKEN | INVALID-KEY | ERROR
                                      OFFER | ANSWER | CANDIDATE
                                      LEAVE | EXPIRE
  HEARTBEAT is sent every ``heartbeat_interval`` seconds.

Data connections are aiortc data channels with PeerJS "json"
serialization (one JSON document per message). aiortc gathers every ICE
candidate before the local description is set, so we never trickle our
own candidates; remote candidates are added as they arrive.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from typing import Any, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed as SocketClosed
from websockets.exceptions import WebSocketException
from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from signlink.core.config import PeerConfig
from signlink.peer.signaling import (
    INVALID_KEY,
    NETWORK,
    PEER_UNAVAILABLE,
    SERVER_ERROR,
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

BROWSER = "aiortc"


class PeerJSConnection(PeerConnection):
    """One RTCPeerConnection carrying one data channel to a remote peer."""

    def __init__(
        self,
        endpoint: PeerJSEndpoint,
        peer: str,
        connection_id: str,
        sink: asyncio.Queue,
    ):
        self.peer = peer
        self.connection_id = connection_id
        self._endpoint = endpoint
        self._sink = sink
        self._pc = RTCPeerConnection(configuration=endpoint.rtc_configuration())
        self._channel: Any = None
        self._open = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        # Remote candidates that arrived before the remote description
        self._early_candidates: list[Any] = []
        self._remote_described = False

        @self._pc.on("connectionstatechange")
        async def on_state_change() -> None:
            state = self._pc.connectionState
            logger.debug(f"Peer connection {self.connection_id} state: {state}")
            if state == "failed" and not self._closed:
                self._sink.put_nowait(
                    ConnectionFailed(self, f"Negotiation with {self.peer} failed")
                )
                await self.close()

        @self._pc.on("datachannel")
        def on_datachannel(channel: Any) -> None:
            self._bind(channel)

    @property
    def open(self) -> bool:
        return self._open and not self._closed

    def send(self, data: Any) -> None:
        if not self.open:
            raise ConnectionError(f"Connection to {self.peer} is not open")
        self._channel.send(json.dumps(data))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._open = False
        self._endpoint.forget(self)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        with contextlib.suppress(Exception):
            await self._pc.close()
        self._sink.put_nowait(ConnectionClosed(self))

    # ─── Negotiation ─────────────────────────────────────────────

    def start_outbound(self) -> None:
        self._bind(self._pc.createDataChannel(self.connection_id, ordered=True))
        self._task = asyncio.create_task(self._offer())

    def start_inbound(self, payload: dict) -> None:
        self._task = asyncio.create_task(self._answer(payload))

    async def _offer(self) -> None:
        try:
            await self._pc.setLocalDescription(await self._pc.createOffer())
            await self._endpoint.send_message(
                "OFFER",
                self.peer,
                {
                    "sdp": {
                        "type": self._pc.localDescription.type,
                        "sdp": self._pc.localDescription.sdp,
                    },
                    "type": "data",
                    "connectionId": self.connection_id,
                    "label": self.connection_id,
                    "serialization": "json",
                    "reliable": True,
                    "metadata": None,
                    "browser": BROWSER,
                },
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Offer to {self.peer} failed: {e}", exc_info=True)
            self._sink.put_nowait(ConnectionFailed(self, str(e)))

    async def _answer(self, payload: dict) -> None:
        try:
            sdp = payload["sdp"]
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=sdp["sdp"], type=sdp["type"])
            )
            await self._apply_early_candidates()
            await self._pc.setLocalDescription(await self._pc.createAnswer())
            await self._endpoint.send_message(
                "ANSWER",
                self.peer,
                {
                    "sdp": {
                        "type": self._pc.localDescription.type,
                        "sdp": self._pc.localDescription.sdp,
                    },
                    "type": "data",
                    "connectionId": self.connection_id,
                    "browser": BROWSER,
                },
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Answer to {self.peer} failed: {e}", exc_info=True)
            self._sink.put_nowait(ConnectionFailed(self, str(e)))

    async def handle_answer(self, payload: dict) -> None:
        sdp = payload["sdp"]
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=sdp["sdp"], type=sdp["type"])
        )
        await self._apply_early_candidates()

    async def handle_candidate(self, payload: dict) -> None:
        raw = payload.get("candidate") or {}
        line = raw.get("candidate", "")
        if not line:
            return
        candidate = candidate_from_sdp(line.split(":", 1)[1] if line.startswith("candidate:") else line)
        candidate.sdpMid = raw.get("sdpMid")
        candidate.sdpMLineIndex = raw.get("sdpMLineIndex")
        if not self._remote_described:
            self._early_candidates.append(candidate)
            return
        await self._pc.addIceCandidate(candidate)

    async def _apply_early_candidates(self) -> None:
        self._remote_described = True
        candidates, self._early_candidates = self._early_candidates, []
        for candidate in candidates:
            await self._pc.addIceCandidate(candidate)

    # ─── Data channel ────────────────────────────────────────────

    def _bind(self, channel: Any) -> None:
        self._channel = channel

        @channel.on("open")
        def on_open() -> None:
            self._mark_open()

        @channel.on("message")
        def on_message(message: Any) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            try:
                data = json.loads(message)
            except ValueError:
                logger.debug(f"Dropping non-JSON message from {self.peer}")
                return
            self._sink.put_nowait(ConnectionData(self, data))

        @channel.on("close")
        def on_close() -> None:
            if not self._closed:
                self._close_task = asyncio.ensure_future(self.close())

        # Inbound channels are announced already open
        if channel.readyState == "open":
            self._mark_open()

    def _mark_open(self) -> None:
        if self._open or self._closed:
            return
        self._open = True
        self._sink.put_nowait(ConnectionOpened(self))

    def __repr__(self) -> str:
        return f"<PeerJSConnection {self.connection_id} peer={self.peer}>"


class PeerJSEndpoint(SignalingEndpoint):
    """Registration with a PeerJS server over its WebSocket protocol."""

    def __init__(self, config: PeerConfig, peer_id: Optional[str], sink: asyncio.Queue):
        self.id = peer_id
        self._config = config
        self._sink = sink
        self._token = uuid.uuid4().hex[:12]
        self._ws: Any = None
        self._open = False
        self._disconnected = False
        self._destroyed = False
        self._run_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._connections: dict[str, PeerJSConnection] = {}

    @property
    def open(self) -> bool:
        return self._open

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def rtc_configuration(self) -> RTCConfiguration:
        return RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in self._config.ice_servers]
        )

    async def start(self) -> None:
        if self._destroyed or self._run_task is not None:
            return
        self._run_task = asyncio.create_task(self._run())

    async def reconnect(self) -> None:
        if self._destroyed or not self._disconnected:
            return
        logger.info(f"Reconnecting to signaling server as {self.id}")
        self._disconnected = False
        self._run_task = asyncio.create_task(self._run())

    def connect(self, peer_id: str) -> PeerJSConnection:
        if not self._open:
            raise ConnectionError("Signaling endpoint is not open")
        connection = PeerJSConnection(
            self, peer_id, f"dc_{uuid.uuid4().hex[:12]}", self._sink
        )
        self._connections[connection.connection_id] = connection
        connection.start_outbound()
        return connection

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._open = False
        for connection in list(self._connections.values()):
            await connection.close()
        self._connections.clear()
        for task in (self._heartbeat_task, self._run_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await self._close_socket()
        logger.info(f"Signaling endpoint {self.id} destroyed")

    def forget(self, connection: PeerJSConnection) -> None:
        self._connections.pop(connection.connection_id, None)

    async def send_message(self, msg_type: str, dst: str, payload: dict) -> None:
        if self._ws is None:
            raise ConnectionError("Not connected to the signaling server")
        await self._ws.send(json.dumps({"type": msg_type, "dst": dst, "payload": payload}))

    # ─── Server session ──────────────────────────────────────────

    async def _fetch_id(self) -> str:
        url = f"{self._config.http_base}{self._config.key}/id"
        async with httpx.AsyncClient(timeout=self._config.request_timeout) as client:
            response = await client.get(url, params={"ts": f"{time.time()}"})
            response.raise_for_status()
            return response.text.strip()

    def _socket_url(self) -> str:
        return (
            f"{self._config.ws_base}peerjs?key={self._config.key}"
            f"&id={self.id}&token={self._token}"
        )

    async def _run(self) -> None:
        was_open = False
        try:
            if self.id is None:
                self.id = await self._fetch_id()

            async with websockets.connect(self._socket_url()) as ws:
                self._ws = ws
                self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))
                async for raw in ws:
                    opened = await self._handle_server_message(raw)
                    was_open = was_open or opened
                    if self._destroyed:
                        return
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            self._error(SERVER_ERROR, f"Could not get an ID from the server: {e}")
        except (OSError, WebSocketException) as e:
            logger.warning(f"Signaling connection lost: {e}")
            if not was_open and not self._destroyed:
                self._error(NETWORK, f"Lost connection to server: {e}")
        finally:
            await self._stop_heartbeat()
            self._ws = None
            self._open = False

        if self._destroyed:
            return
        if not was_open:
            # Never registered: throttle so the caller's reconnect is not a hot loop
            await asyncio.sleep(self._config.retry_interval)
        self._disconnected = True
        self._sink.put_nowait(EndpointDisconnected(self))

    async def _handle_server_message(self, raw: Any) -> bool:
        """Apply one server message. Returns True when it was OPEN."""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug(f"Invalid server message: {raw!r}")
            return False

        msg_type = message.get("type")
        payload = message.get("payload") or {}
        src = message.get("src", "")

        if msg_type == "OPEN":
            self._open = True
            logger.info(f"Registered with signaling server as {self.id}")
            self._sink.put_nowait(EndpointOpen(self, self.id or ""))
            return True

        if msg_type == "ID-TAKEN":
            self._error(UNAVAILABLE_ID, f"ID {self.id} is taken")
            await self._close_socket()
        elif msg_type == "INVALID-KEY":
            self._error(INVALID_KEY, f'API KEY "{self._config.key}" is invalid')
            await self._close_socket()
        elif msg_type == "ERROR":
            self._error(SERVER_ERROR, str(payload.get("msg", "")))
        elif msg_type == "OFFER":
            self._handle_offer(src, payload)
        elif msg_type in ("ANSWER", "CANDIDATE"):
            connection = self._connections.get(payload.get("connectionId", ""))
            if connection is None:
                logger.debug(f"{msg_type} for unknown connection from {src}")
                return False
            try:
                if msg_type == "ANSWER":
                    await connection.handle_answer(payload)
                else:
                    await connection.handle_candidate(payload)
            except (KeyError, ValueError, IndexError) as e:
                logger.warning(f"Bad {msg_type} from {src}: {e}")
        elif msg_type in ("LEAVE", "EXPIRE"):
            for connection in [c for c in self._connections.values() if c.peer == src]:
                if msg_type == "EXPIRE":
                    self._sink.put_nowait(
                        ConnectionFailed(connection, f"Could not connect to peer {src}")
                    )
                    self._error(PEER_UNAVAILABLE, f"Could not connect to peer {src}")
                await connection.close()
        elif msg_type != "HEARTBEAT":
            logger.debug(f"Unhandled server message type: {msg_type}")
        return False

    def _handle_offer(self, src: str, payload: dict) -> None:
        connection_id = payload.get("connectionId", "")
        if not connection_id or payload.get("type", "data") != "data":
            logger.debug(f"Ignoring non-data offer from {src}")
            return
        if connection_id in self._connections:
            logger.debug(f"Duplicate offer {connection_id} from {src}")
            return
        connection = PeerJSConnection(self, src, connection_id, self._sink)
        self._connections[connection_id] = connection
        self._sink.put_nowait(IncomingConnection(self, connection))
        connection.start_inbound(payload)

    def _error(self, kind: str, message: str) -> None:
        logger.error(f"Signaling error ({kind}): {message}")
        self._sink.put_nowait(EndpointError(self, kind, message))

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            try:
                await ws.send(json.dumps({"type": "HEARTBEAT"}))
            except SocketClosed:
                return

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()


def peerjs_endpoint_factory(config: PeerConfig) -> EndpointFactory:
    """Endpoint factory for PeerSessionManager bound to one server config."""

    def factory(peer_id: Optional[str], sink: asyncio.Queue) -> SignalingEndpoint:
        return PeerJSEndpoint(config, peer_id, sink)

    return factory
