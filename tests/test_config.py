"""Tests for the config system."""

import pytest

from signlink.core.config import (
    DEFAULT_ICE_SERVERS,
    PeerConfig,
    RouterConfig,
    SerialConfig,
    SignLinkConfig,
    StorageConfig,
)


def test_serial_defaults():
    cfg = SerialConfig()
    assert cfg.port == ""
    assert cfg.baud_rate == 9600
    assert cfg.max_line_length == 1024
    assert cfg.disconnect_grace == 0.1


def test_peer_defaults():
    cfg = PeerConfig()
    assert cfg.prefix == "sg-v2-"
    assert cfg.retry_interval == 2.0
    assert cfg.collision_backoff == 1.5
    assert cfg.ice_servers == DEFAULT_ICE_SERVERS
    assert "stun:stun.l.google.com:19302" in cfg.ice_servers


def test_router_defaults():
    cfg = RouterConfig()
    assert cfg.history_size == 30
    assert cfg.allow_duplicates is False
    assert cfg.sos_sentinel == "!!SOS_TRIGGER!!"


def test_peer_urls():
    cfg = PeerConfig()
    assert cfg.http_base == "https://0.peerjs.com:443/"
    assert cfg.ws_base == "wss://0.peerjs.com:443/"

    local = PeerConfig(host="localhost", port=9000, path="myapp", secure=False)
    assert local.http_base == "http://localhost:9000/myapp/"
    assert local.ws_base == "ws://localhost:9000/myapp/"


def test_serial_from_env(monkeypatch):
    monkeypatch.setenv("SIGNLINK_SERIAL_PORT", "/dev/ttyACM0")
    monkeypatch.setenv("SIGNLINK_BAUD_RATE", "115200")
    cfg = SerialConfig.from_env()
    assert cfg.port == "/dev/ttyACM0"
    assert cfg.baud_rate == 115200


def test_max_line_length_can_be_disabled(monkeypatch):
    monkeypatch.setenv("SIGNLINK_MAX_LINE_LENGTH", "0")
    assert SerialConfig.from_env().max_line_length is None

    monkeypatch.setenv("SIGNLINK_MAX_LINE_LENGTH", "256")
    assert SerialConfig.from_env().max_line_length == 256


def test_peer_from_env(monkeypatch):
    monkeypatch.setenv("SIGNLINK_PEER_SECURE", "false")
    monkeypatch.setenv("SIGNLINK_ICE_SERVERS", "stun:a:1, stun:b:2,")
    cfg = PeerConfig.from_env()
    assert cfg.secure is False
    assert cfg.ice_servers == ("stun:a:1", "stun:b:2")


def test_router_from_env(monkeypatch):
    monkeypatch.setenv("SIGNLINK_ALLOW_DUPLICATES", "yes")
    monkeypatch.setenv("SIGNLINK_HISTORY_SIZE", "5")
    cfg = RouterConfig.from_env()
    assert cfg.allow_duplicates is True
    assert cfg.history_size == 5


def test_storage_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SIGNLINK_STATE_PATH", str(tmp_path / "s.db"))
    assert StorageConfig.from_env().state_path == str(tmp_path / "s.db")


def test_config_frozen():
    cfg = PeerConfig()
    with pytest.raises(Exception):
        cfg.prefix = "other-"  # type: ignore


def test_signlink_config_composition():
    cfg = SignLinkConfig()
    assert cfg.serial.baud_rate == 9600
    assert cfg.peer.prefix == "sg-v2-"
    assert cfg.router.history_size == 30
    assert cfg.server.port == 8765
