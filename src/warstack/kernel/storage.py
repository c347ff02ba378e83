"""
Key-value storage backends for snapshots

The persistence layer only needs two operations, get and set of a string
under a key. Backends are swappable: an in-memory dict for tests and a
SQLite table for anything that should survive a restart.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Protocol

from warstack.kernel.resilience import retry_on_sqlite_lock


class KeyValueStore(Protocol):
    """Protocol for snapshot storage backends"""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key was never set"""
        ...

    def set(self, key: str, value: str) -> None:
        """Store (or overwrite) a value"""
        ...


class InMemoryStore:
    """Dict-backed store; contents vanish with the process"""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteKeyValueStore:
    """
    SQLite-based key-value store

    Schema:
    - kv table: key (primary key), value, updated_at
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Args:
            db_path: Path to SQLite database file (created if missing)
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @retry_on_sqlite_lock()
    def get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    @retry_on_sqlite_lock()
    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """,
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> list[str]:
        with self._connect() as conn:
            cursor = conn.execute("SELECT key FROM kv ORDER BY key")
            return [row["key"] for row in cursor.fetchall()]
