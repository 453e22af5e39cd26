"""
Peer package: one host/client session over a signaling server.

The session manager only knows the interfaces in ``signaling``; the
PeerJS/aiortc implementation is plugged in through an endpoint factory.
"""

from signlink.peer.identity import HostIdentityStore, generate_host_id
from signlink.peer.session import PeerSessionManager

__all__ = ["HostIdentityStore", "PeerSessionManager", "generate_host_id"]
