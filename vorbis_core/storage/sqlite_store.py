"""
SQLite-backed key-value store.

Keeps one connection for the lifetime of the store (the core runs on a single
event loop thread) with WAL journaling for file databases. Values are stored
verbatim in a two-column table.
"""

import sqlite3
import logging
import contextlib
from pathlib import Path
from typing import Generator, Optional

from ..constants import SQLITE_TIMEOUT_SECONDS


class SQLiteKeyValueStore:
    """KeyValueStoreProtocol implementation backed by a SQLite table."""

    def __init__(self, db_path: str, timeout: float = SQLITE_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.timeout = timeout
        self._connection: Optional[sqlite3.Connection] = None
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.pragma_settings = {
            'journal_mode': 'WAL',
            'synchronous': 'NORMAL',
            'temp_store': 'MEMORY',
        }
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        """Open the connection on first use and apply PRAGMA settings."""
        if self._connection is None:
            if self.db_path != ':memory:':
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)

            cursor = conn.cursor()
            for pragma, value in self.pragma_settings.items():
                cursor.execute(f"PRAGMA {pragma}={value}")

            cursor.execute("PRAGMA journal_mode")
            journal_mode = cursor.fetchone()[0]
            if self.db_path != ':memory:' and journal_mode.upper() != 'WAL':
                self._logger.warning(f"Failed to enable WAL mode, using {journal_mode}")

            self._connection = conn

        return self._connection

    @contextlib.contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield the connection, rolling back if the block raises."""
        conn = self._get_connection()
        try:
            yield conn
        except Exception as e:
            conn.rollback()
            self._logger.error(f"SQLite operation failed, rolling back: {e}")
            raise

    def _ensure_table(self) -> None:
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.get_connection() as conn:
            conn.execute("INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)", (key, value))
            conn.commit()

    def remove(self, key: str) -> None:
        with self.get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()

    def close(self) -> None:
        """Close the connection; the next call reopens it."""
        if self._connection is not None:
            try:
                self._connection.close()
            except sqlite3.Error as e:
                self._logger.warning(f"Error closing SQLite connection: {e}")
            finally:
                self._connection = None
