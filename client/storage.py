"""
client/storage.py -- SQLite-backed key-value store for admin client state.

Holds everything the client must remember between runs: the login session
record, the failed-login counter, the unsaved catalog draft and the logo
cache. Values are JSON documents; an optional TTL expires an entry lazily
on read or in bulk via purge_expired().

Fail safe: a value that no longer parses as JSON reads as absent and is
deleted, so a corrupted record can never be mistaken for a valid session.

Usage:
    store = KeyValueStore(Path("~/.linkshelf/state.db").expanduser())
    store.set("draft_catalog", {"categories": [], "apps": []})
    store.get("draft_catalog")            # returns the value or None
    store.set("logo:example.com", url, ttl=7 * 24 * 3600)
    store.purge_expired()                 # LogoCache.set() runs this before each write
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union

logger = logging.getLogger("linkshelf.client")

DEFAULT_STATE_PATH = Path.home() / ".linkshelf" / "state.db"

_DDL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    stored_at   REAL NOT NULL,
    expires_at  REAL
);
"""


class KeyValueStore:
    def __init__(
        self,
        db_path: Union[Path, str] = DEFAULT_STATE_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value for key, or None if absent, expired or corrupt."""
        row = self._conn.execute(
            "SELECT value, expires_at FROM kv_store WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and self._clock() >= expires_at:
            self.remove(key)
            return None
        try:
            return json.loads(value)
        except ValueError:
            logger.warning("Discarding corrupt client state for key %r", key)
            self.remove(key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key, replacing any existing entry."""
        now = self._clock()
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, stored_at, expires_at) VALUES (?, ?, ?, ?)",
            (key, json.dumps(value), now, now + ttl if ttl else None),
        )
        self._conn.commit()

    def remove(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        """Keys starting with prefix, oldest first."""
        rows = self._conn.execute(
            "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY stored_at, rowid",
            (_escape_like(prefix) + "%",),
        ).fetchall()
        return [r[0] for r in rows]

    def purge_expired(self) -> int:
        """Delete all entries past their TTL. Returns number of rows removed."""
        cursor = self._conn.execute(
            "DELETE FROM kv_store WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (self._clock(),),
        )
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
