"""
Key-value store capability.

Provides the store handle used by the usage ledger and provider configs,
backed by SQLite for persistence or by a dict for embedding and tests.
"""

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple


DEFAULT_DB_PATH = ".provider-observatory.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    return conn


class KeyValueStore(Protocol):
    """Minimal key-value capability consumed by the storage layer.

    No transactions are assumed across calls.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_entries(self) -> List[Tuple[str, Any]]: ...


class SqliteKeyValueStore:
    """Key-value store persisting JSON values in a single SQLite table.

    Opens a connection per operation, so one instance may be shared
    between threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize(self) -> None:
        """Create the kv_store table if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[Any]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            return json.loads(row[0]) if row else None
        finally:
            conn.close()

    def set(self, key: str, value: Any) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def list_entries(self) -> List[Tuple[str, Any]]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT key, value FROM kv_store")
            return [(row[0], json.loads(row[1])) for row in cursor.fetchall()]
        finally:
            conn.close()


class MemoryKeyValueStore:
    """In-process key-value store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_entries(self) -> List[Tuple[str, Any]]:
        return list(self._data.items())
