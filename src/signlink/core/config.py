"""
SignLink Configuration: single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (a local .env is honoured).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ICE_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:global.stun.twilio.com:3478",
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    if not value or value == "0" or value.lower() == "none":
        return None
    return int(value)


@dataclass(frozen=True)
class SerialConfig:
    """Serial device channel settings."""

    port: str = ""  # empty = pick among authorised / available ports
    baud_rate: int = 9600
    read_timeout: float = 0.1  # seconds a blocking read may wait
    hotplug_interval: float = 1.0  # seconds between port scans
    max_line_length: int | None = 1024  # characters, None = unbounded
    disconnect_grace: float = 0.1  # seconds to let the read loop release

    @classmethod
    def from_env(cls) -> SerialConfig:
        return cls(
            port=os.getenv("SIGNLINK_SERIAL_PORT", ""),
            baud_rate=int(os.getenv("SIGNLINK_BAUD_RATE", "9600")),
            read_timeout=float(os.getenv("SIGNLINK_SERIAL_READ_TIMEOUT", "0.1")),
            hotplug_interval=float(os.getenv("SIGNLINK_HOTPLUG_INTERVAL", "1.0")),
            max_line_length=_env_optional_int("SIGNLINK_MAX_LINE_LENGTH", 1024),
            disconnect_grace=float(os.getenv("SIGNLINK_DISCONNECT_GRACE", "0.1")),
        )


@dataclass(frozen=True)
class PeerConfig:
    """Peer session and PeerJS signaling server settings."""

    prefix: str = "sg-v2-"
    host: str = "0.peerjs.com"
    port: int = 443
    path: str = "/"
    key: str = "peerjs"
    secure: bool = True
    ice_servers: tuple[str, ...] = DEFAULT_ICE_SERVERS
    retry_interval: float = 2.0  # seconds between repair ticks
    collision_backoff: float = 1.5  # seconds before re-registering a taken id
    heartbeat_interval: float = 5.0
    request_timeout: float = 10.0

    @property
    def http_base(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}{self._normalized_path}"

    @property
    def ws_base(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}{self._normalized_path}"

    @property
    def _normalized_path(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return path if path.endswith("/") else f"{path}/"

    @classmethod
    def from_env(cls) -> PeerConfig:
        ice = os.getenv("SIGNLINK_ICE_SERVERS")
        return cls(
            prefix=os.getenv("SIGNLINK_PEER_PREFIX", "sg-v2-"),
            host=os.getenv("SIGNLINK_PEER_HOST", "0.peerjs.com"),
            port=int(os.getenv("SIGNLINK_PEER_PORT", "443")),
            path=os.getenv("SIGNLINK_PEER_PATH", "/"),
            key=os.getenv("SIGNLINK_PEER_KEY", "peerjs"),
            secure=_env_bool("SIGNLINK_PEER_SECURE", True),
            ice_servers=(
                tuple(s.strip() for s in ice.split(",") if s.strip())
                if ice is not None
                else DEFAULT_ICE_SERVERS
            ),
            retry_interval=float(os.getenv("SIGNLINK_RETRY_INTERVAL", "2.0")),
            collision_backoff=float(os.getenv("SIGNLINK_COLLISION_BACKOFF", "1.5")),
            heartbeat_interval=float(os.getenv("SIGNLINK_HEARTBEAT_INTERVAL", "5.0")),
            request_timeout=float(os.getenv("SIGNLINK_REQUEST_TIMEOUT", "10.0")),
        )


@dataclass(frozen=True)
class RouterConfig:
    """Unified message stream settings."""

    history_size: int = 30
    allow_duplicates: bool = False
    sos_sentinel: str = "!!SOS_TRIGGER!!"

    @classmethod
    def from_env(cls) -> RouterConfig:
        return cls(
            history_size=int(os.getenv("SIGNLINK_HISTORY_SIZE", "30")),
            allow_duplicates=_env_bool("SIGNLINK_ALLOW_DUPLICATES", False),
            sos_sentinel=os.getenv("SIGNLINK_SOS_SENTINEL", "!!SOS_TRIGGER!!"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Where the persisted key/value state (host id, authorised ports) lives."""

    state_path: str = str(Path.home() / ".signlink" / "state.db")

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(
            state_path=os.getenv(
                "SIGNLINK_STATE_PATH", str(Path.home() / ".signlink" / "state.db")
            ),
        )


@dataclass(frozen=True)
class ServerConfig:
    """HTTP / WebSocket surface settings."""

    host: str = "127.0.0.1"
    port: int = 8765

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("SIGNLINK_HOST", "127.0.0.1"),
            port=int(os.getenv("SIGNLINK_PORT", "8765")),
        )


@dataclass(frozen=True)
class SignLinkConfig:
    """Root configuration, one object handed to the runtime."""

    serial: SerialConfig = field(default_factory=SerialConfig)
    peer: PeerConfig = field(default_factory=PeerConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> SignLinkConfig:
        return cls(
            serial=SerialConfig.from_env(),
            peer=PeerConfig.from_env(),
            router=RouterConfig.from_env(),
            storage=StorageConfig.from_env(),
            server=ServerConfig.from_env(),
        )
