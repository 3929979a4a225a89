"""Async SQLite keyed store for feed-gate.

Uses ``aiosqlite`` for non-blocking access with WAL mode.  The store is a
plain bytes-to-bytes map; it knows nothing about what the values encode.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import aiosqlite


class KeyValueStore:
    """Thin async wrapper exposing ``get``/``put``/``contains``/``remove``.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and create the table."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))

        # Enable WAL mode for better concurrent read performance.
        await self._conn.execute("PRAGMA journal_mode=WAL;")

        await self._conn.execute(
            "CREATE TABLE IF NOT EXISTS entries ("
            "key BLOB PRIMARY KEY, "
            "value BLOB NOT NULL, "
            "updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )
        await self._conn.commit()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> KeyValueStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Keyed access
    # ------------------------------------------------------------------

    async def get(self, key: bytes) -> Optional[bytes]:
        """Return the value stored under *key*, or ``None``."""
        assert self._conn is not None, "Store not connected. Call connect() first."
        cursor = await self._conn.execute("SELECT value FROM entries WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return bytes(row[0])

    async def put(self, key: bytes, value: bytes) -> None:
        """Insert or overwrite *key*, then commit."""
        assert self._conn is not None, "Store not connected. Call connect() first."
        await self._conn.execute(
            "INSERT INTO entries (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = CURRENT_TIMESTAMP",
            (key, value),
        )
        await self._conn.commit()

    async def contains(self, key: bytes) -> bool:
        assert self._conn is not None, "Store not connected. Call connect() first."
        cursor = await self._conn.execute("SELECT 1 FROM entries WHERE key = ?", (key,))
        return await cursor.fetchone() is not None

    async def remove(self, key: bytes) -> None:
        """Delete *key* if present."""
        assert self._conn is not None, "Store not connected. Call connect() first."
        await self._conn.execute("DELETE FROM entries WHERE key = ?", (key,))
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_store(config_dir: Path, path: str = "feed_gate.db") -> KeyValueStore:
    """Return a :class:`KeyValueStore` at *path*, resolved against *config_dir*.

    The caller is responsible for calling :meth:`KeyValueStore.connect`
    before using the returned instance.
    """
    db_path = Path(path)
    if not db_path.is_absolute():
        db_path = Path(config_dir) / db_path
    return KeyValueStore(db_path)
