"""
SQLite-based durable key-value store.

Values are JSON documents keyed by name. Each operation opens its own
short-lived connection so the store is safe to share with the scheduler
thread.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)


class KeyValueStoreError(Exception):
    """Raised when key-value store operations fail."""
    pass


class KeyValueStore:
    """
    SQLite-backed key-value store for JSON-serializable values.

    Features:
    - Atomic upserts with transactions
    - WAL journal for concurrent readers
    - Versioned schema

    Usage:
        store = KeyValueStore(Path("data/sync_state.db"))

        store.set("sync_status", {"is_running": False})
        status = store.get("sync_status", default={})
    """

    SCHEMA_VERSION = 1

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """

    CREATE_METADATA_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS _metadata (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    def __init__(self, database_path: Path):
        """
        Initialize key-value store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)

        # Ensure parent directory exists
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

        logger.info(f"Key-value store initialized at {self.database_path}")

    def _initialize_database(self) -> None:
        """Create tables and record the schema version."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute(self.CREATE_METADATA_TABLE_SQL)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            current_version = int(row[0]) if row else 0

            if current_version < self.SCHEMA_VERSION:
                logger.info(f"Upgrading schema from v{current_version} to v{self.SCHEMA_VERSION}")
                cursor.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(self.SCHEMA_VERSION)),
                )

            cursor.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with WAL mode enabled
        """
        try:
            conn = sqlite3.connect(
                self.database_path,
                timeout=30.0,
                isolation_level="DEFERRED",
            )
        except sqlite3.Error as e:
            raise KeyValueStoreError(
                f"Cannot open key-value store {self.database_path}: {e}"
            ) from e

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            raise KeyValueStoreError(f"Key-value store operation failed: {e}") from e
        finally:
            conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Args:
            key: Key to read
            default: Returned when the key is absent or its value is corrupt

        Returns:
            Decoded JSON value, or default
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()

        if row is None:
            return default

        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning(f"Discarding corrupt value stored under '{key}'")
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Write a value, replacing any previous one.

        Args:
            key: Key to write
            value: JSON-serializable value
        """
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise KeyValueStoreError(f"Value for '{key}' is not JSON-serializable: {e}") from e

        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, encoded, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

        logger.debug(f"Stored value for '{key}'")

    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    def keys(self) -> list[str]:
        """List stored keys in sorted order."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key FROM kv_store ORDER BY key")
            return [row[0] for row in cursor.fetchall()]
