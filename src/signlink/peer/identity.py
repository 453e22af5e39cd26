"""
Host identity: the short id a client types (or scans) to reach this host.

Generated once, persisted, and reused on every later host run so that a
controller paired yesterday still finds us today.
"""

from __future__ import annotations

import logging
import random

from signlink.storage.store import StateStore

logger = logging.getLogger(__name__)

HOST_ID_KEY = "host_id"


def generate_host_id(rng: random.Random | None = None) -> str:
    """A 4-digit numeric id (1000–9999): easy to read aloud and type."""
    rng = rng or random.SystemRandom()
    return str(rng.randint(1000, 9999))


def strip_prefix(peer_id: str, prefix: str) -> str:
    return peer_id[len(prefix):] if prefix and peer_id.startswith(prefix) else peer_id


class HostIdentityStore:
    """Loads the persisted host id, creating it on first use."""

    def __init__(self, store: StateStore, rng: random.Random | None = None):
        self._store = store
        self._rng = rng

    async def load_or_create(self) -> str:
        saved = await self._store.get(HOST_ID_KEY)
        if isinstance(saved, str) and saved:
            return saved

        host_id = generate_host_id(self._rng)
        await self._store.set(HOST_ID_KEY, host_id)
        logger.info(f"Generated new host id {host_id}")
        return host_id
