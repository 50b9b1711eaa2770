"""Persistent key/value storage for generated contexts using SQLite.

The store knows nothing about artifacts: values are opaque strings. The
context cache serializes artifacts into it and is its only writer.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

from modctx.exceptions import StorageError


class ContextStore:
    """Durable key/value backing for the context cache."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        return self._conn

    def _create_tables(self) -> None:
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            );
        """)
        conn.commit()

    # ------------------------------------------------------------------
    # Key/value API
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        """Get a value, or None when the key is absent."""
        with self._lock:
            try:
                row = self._get_conn().execute(
                    "SELECT value FROM entries WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Could not read '{key}': {e}") from e
        return row["value"] if row else None

    def put(self, key: str, value: str) -> None:
        """Insert or replace a value in a single transaction."""
        with self._lock:
            try:
                conn = self._get_conn()
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO entries (key, value, updated_at) "
                        "VALUES (?, ?, ?)",
                        (key, value, time.time()),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Could not write '{key}': {e}") from e

    def delete(self, key: str) -> bool:
        """Delete a key. Returns whether it existed."""
        with self._lock:
            try:
                conn = self._get_conn()
                with conn:
                    cur = conn.execute("DELETE FROM entries WHERE key = ?", (key,))
            except sqlite3.Error as e:
                raise StorageError(f"Could not delete '{key}': {e}") from e
        return cur.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        """All keys starting with `prefix`, sorted."""
        with self._lock:
            try:
                rows = self._get_conn().execute(
                    "SELECT key FROM entries WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Could not list keys: {e}") from e
        return [row["key"] for row in rows]

    def clear(self) -> int:
        """Delete every entry. Returns how many were removed."""
        with self._lock:
            try:
                conn = self._get_conn()
                with conn:
                    cur = conn.execute("DELETE FROM entries")
            except sqlite3.Error as e:
                raise StorageError(f"Could not clear store: {e}") from e
        return cur.rowcount

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
