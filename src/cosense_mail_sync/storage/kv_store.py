"""SQLite-backed key-value store holding users, configs, tokens and import records."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class KeyValueStore:
    """JSON values keyed by string, with optional per-key expiry.

    Keys are namespaced by convention (``user:<id>``, ``saved_emails:<id>``).
    Expired entries read as absent and are purged on access.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; update() manages its own transaction
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> KeyValueStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL
            );

            CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at);
        """)

    def get(self, key: str) -> Any | None:
        """Return the decoded value, or None if absent or expired."""
        with self._lock:
            return self._get(key)

    def _get(self, key: str) -> Any | None:
        row = self.conn.execute(
            "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] is not None and row["expires_at"] <= time.time():
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return None
        return json.loads(row["value"])

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a JSON-serializable value, optionally expiring after ttl_seconds."""
        with self._lock:
            self._set(key, value, ttl_seconds)

    def _set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds is not None else None
        self.conn.execute(
            """INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   expires_at = excluded.expires_at""",
            (key, json.dumps(value, ensure_ascii=False), expires_at),
        )

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        with self._lock:
            cursor = self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with prefix, in key order."""
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        with self._lock:
            rows = self.conn.execute(
                "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' "
                "AND (expires_at IS NULL OR expires_at > ?) ORDER BY key",
                (pattern, time.time()),
            ).fetchall()
        return [row["key"] for row in rows]

    def update(self, key: str, fn: Callable[[Any | None], Any]) -> Any:
        """Atomically read-modify-write a key.

        ``fn`` receives the current value (None if absent) and returns the new
        value. The write keeps no expiry. Returns the new value.
        """
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                new_value = fn(self._get(key))
                self._set(key, new_value)
            except Exception:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")
        return new_value
