"""
State Store: SQLite-backed key/value persistence.

Holds the little state SignLink keeps across restarts: the host identity
and the serial ports the user has explicitly connected to. Values are JSON
encoded so callers can store strings, numbers and lists alike.

Usage:
    store = StateStore(db_path)
    await store.start()

    await store.set("host_id", "4821")
    host_id = await store.get("host_id")
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)


class StateStore:
    """
    Key/value persistence.

    One table, one row per key. Single writer (the runtime), so aiosqlite's
    serialised connection is all the locking we need.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create the table."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._db.commit()
        logger.debug("State store ready at %s", self.db_path)

    async def stop(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("StateStore not started")
        return self._db

    async def get(self, key: str, default: Any = None) -> Any:
        db = self._require_db()
        async with db.execute("SELECT value FROM state WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state value for key %s", key)
            return default

    async def set(self, key: str, value: Any) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO state (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                           updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), time.time()),
        )
        await db.commit()

    async def delete(self, key: str) -> bool:
        db = self._require_db()
        cursor = await db.execute("DELETE FROM state WHERE key = ?", (key,))
        await db.commit()
        return cursor.rowcount > 0

    async def keys(self) -> list[str]:
        db = self._require_db()
        async with db.execute("SELECT key FROM state ORDER BY key") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
