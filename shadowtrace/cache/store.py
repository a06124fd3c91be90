"""SQLite-backed key/value store shared by the ranking cache and the rate tracker."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterable

MEMORY = ":memory:"
# Upper bound for prefix ranges; keys are ASCII so this sorts after every continuation.
_PREFIX_END = "\uffff"


class LocalStore:
    """
    Durable store with one row per cache entry plus a small settings table.

    Every write is a single committed statement, so readers on other
    connections never observe a half-written entry.
    """

    def __init__(self, db_path: Path | str = MEMORY) -> None:
        self.db_path = db_path
        if db_path != MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(str(db_path), check_same_thread=False)
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    timestamp REAL NOT NULL
                )
                """
            )
            self._connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_entries_timestamp ON cache_entries (timestamp)"
            )
            self._connection.execute(
                "CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._connection.commit()

    # Cache entries

    def get_entry(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def put_entry(self, key: str, value: dict[str, Any], timestamp: float) -> None:
        payload = json.dumps(value, separators=(",", ":"))
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, timestamp) VALUES (?, ?, ?)",
                (key, payload, float(timestamp)),
            )
            self._connection.commit()

    def delete_entry(self, key: str) -> bool:
        with self._lock:
            cursor = self._connection.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            self._connection.commit()
        return cursor.rowcount > 0

    def delete_entries(self, keys: Iterable[str]) -> int:
        deleted = 0
        for key in keys:
            if self.delete_entry(key):
                deleted += 1
        return deleted

    def delete_entries_since(self, timestamp: float) -> int:
        """Delete every entry written at or after ``timestamp``."""
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM cache_entries WHERE timestamp >= ?", (float(timestamp),)
            )
            self._connection.commit()
        return cursor.rowcount

    def entries_with_prefix(self, prefix: str) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT key, value FROM cache_entries WHERE key >= ? AND key < ? ORDER BY key",
                (prefix, prefix + _PREFIX_END),
            ).fetchall()
        return [(key, json.loads(value)) for key, value in rows]

    def keys_with_prefix(self, prefix: str) -> list[str]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT key FROM cache_entries WHERE key >= ? AND key < ? ORDER BY key",
                (prefix, prefix + _PREFIX_END),
            ).fetchall()
        return [row[0] for row in rows]

    def all_entries(self) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT key, value FROM cache_entries ORDER BY key"
            ).fetchall()
        return [(key, json.loads(value)) for key, value in rows]

    def entry_count(self) -> int:
        with self._lock:
            row = self._connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
        return int(row[0])

    def clear_entries(self) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM cache_entries")
            self._connection.commit()

    # Settings

    def get_setting(self, key: str) -> str | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value)
            )
            self._connection.commit()

    def delete_setting(self, key: str) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            self._connection.close()
