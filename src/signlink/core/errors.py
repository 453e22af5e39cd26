"""
Error taxonomy.

Transient failures (unplug, identity collision, signaling hiccups) are
recovered internally and only logged. Only failures caused directly by an
explicit user action with no automatic retry path reach the user, as a
dismissible message.
"""

from __future__ import annotations

from signlink.models import ErrorKind


class SignLinkError(Exception):
    """Base class for all SignLink errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ChannelUnavailable(SignLinkError):
    """No device channel present, selection cancelled, or the port would not open."""

    kind = ErrorKind.CHANNEL_UNAVAILABLE


class DeviceLost(SignLinkError):
    """The open device went away mid-session (unplugged)."""

    kind = ErrorKind.DEVICE_LOST


class IdentityCollision(SignLinkError):
    """The signaling server already has a peer registered under our identity."""

    kind = ErrorKind.IDENTITY_COLLISION


class SignalingDisconnected(SignLinkError):
    """Lost the signaling server connection; the endpoint can reconnect."""

    kind = ErrorKind.SIGNALING_DISCONNECTED


class PeerConnectionError(SignLinkError):
    """A single peer connection failed (peer not found, ICE failure, ...)."""

    kind = ErrorKind.PEER_CONNECTION_ERROR
