"""Tests for the log formatters and setup_logging."""

import json
import logging

import pytest

from signlink.core.logging import (
    NOISY_LOGGERS,
    ColorFormatter,
    StructuredFormatter,
    setup_logging,
)


def record(msg="hello", **extra):
    rec = logging.LogRecord("signlink.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(rec, key, value)
    return rec


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_plain_formatter_labels_transport():
    line = ColorFormatter(use_color=False).format(record("Device unplugged", transport="device"))
    assert line.endswith("[signlink.test] INFO: [device] Device unplugged")
    assert "\033[" not in line


def test_color_formatter_paints_level():
    line = ColorFormatter(use_color=True).format(record())
    assert "\033[32mINFO\033[0m" in line


def test_structured_formatter_emits_extras():
    entry = json.loads(StructuredFormatter().format(record(peer_id="sg-v2-4821", role="host")))
    assert entry["msg"] == "hello"
    assert entry["level"] == "INFO"
    assert entry["peer_id"] == "sg-v2-4821"
    assert entry["role"] == "host"
    assert "transport" not in entry


def test_setup_logging_json(monkeypatch, restore_root):
    monkeypatch.setenv("SIGNLINK_LOG_FORMAT", "json")
    monkeypatch.setenv("SIGNLINK_LOG_LEVEL", "debug")
    setup_logging()

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, StructuredFormatter)
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_setup_logging_text_without_color(monkeypatch, restore_root):
    monkeypatch.setenv("SIGNLINK_LOG_COLOR", "false")
    monkeypatch.delenv("SIGNLINK_LOG_FORMAT", raising=False)
    setup_logging()

    formatter = logging.getLogger().handlers[0].formatter
    assert isinstance(formatter, ColorFormatter)
    assert not formatter.use_color
