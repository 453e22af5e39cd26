"""
SignLink Logging: clean, colorized, transport-aware logging.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (SIGNLINK_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (aiortc, aioice, websockets, httpx)
- Configurable via SIGNLINK_LOG_LEVEL, SIGNLINK_LOG_COLOR, SIGNLINK_LOG_FORMAT

Structured log extra fields (pass via logger.info(..., extra={...})):
    transport, peer_id, channel, role, state
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

# Label colours for records tagged with extra={"transport": ...}
TRANSPORT_COLORS = {
    "device": "\033[35m",
    "peer": "\033[34m",
}

RESET = "\033[0m"
DIM = "\033[2m"

# ICE gathering and signaling sockets log every packet at INFO/DEBUG
NOISY_LOGGERS = (
    "aiortc",
    "aioice",
    "websockets",
    "httpx",
    "httpcore",
    "uvicorn.access",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter: coloured level, dimmed logger name, transport label."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{RESET}" if self.use_color and color else text

    def format(self, record: logging.LogRecord) -> str:
        stamp = self.formatTime(record, self.datefmt)
        level = self._paint(LEVEL_COLORS.get(record.levelno, ""), record.levelname)
        name = self._paint(DIM, record.name)

        message = record.getMessage()
        transport = getattr(record, "transport", None)
        if transport:
            label = self._paint(TRANSPORT_COLORS.get(transport, ""), f"[{transport}]")
            message = f"{label} {message}"

        line = f"{stamp} [{name}] {level}: {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# Structured log fields forwarded from logger.info(..., extra={...})
_STRUCTURED_FIELDS = (
    "transport",
    "peer_id",
    "channel",
    "role",
    "state",
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for log aggregation.

    Each log line is a single JSON object. Extra fields passed via
    logger.info("msg", extra={"peer_id": "sg-v2-1234"})
    are included at the top level for easy querying.

    Enable with: SIGNLINK_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    """Auto-detect color support."""
    env_val = os.getenv("SIGNLINK_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure logging for the entire application.

    Call this once at startup.

    Env vars:
        SIGNLINK_LOG_LEVEL  : DEBUG / INFO / WARNING / ERROR (default: INFO)
        SIGNLINK_LOG_COLOR  : true / false / auto (default: auto, TTY detection)
        SIGNLINK_LOG_FORMAT : text / json (default: text)
    """
    level_name = os.getenv("SIGNLINK_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("SIGNLINK_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers (avoid duplicate output)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("uvicorn.error").setLevel(level)

    logger = logging.getLogger("signlink")
    logger.debug("Logging configured (level=%s, format=%s)", level_name, log_format)
