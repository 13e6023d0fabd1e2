"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ems_alerts.errors import StorageError


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str, timeout: float = 5.0):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
            timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = db_path
        self.timeout = timeout
        self._connection: Optional[sqlite3.Connection] = None
        # Serializes statements issued from different threads on the shared connection.
        self._lock = threading.RLock()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}", "connect") from e
        self._connection.row_factory = sqlite3.Row

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Cursor]:
        """
        Run statements under the connection lock and commit on success.

        Any sqlite3 error (including a closed connection) is rolled back and
        re-raised as StorageError tagged with the operation name.
        """
        with self._lock:
            try:
                cursor = self.connection.cursor()
                yield cursor
                self.connection.commit()
            except sqlite3.Error as e:
                self._rollback()
                raise StorageError(f"{operation} failed: {e}", operation) from e
            except Exception:
                self._rollback()
                raise

    def _rollback(self) -> None:
        if self._connection is not None and self._connection.in_transaction:
            self._connection.rollback()

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.transaction("initialize") as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notification_triggers (
                    id TEXT PRIMARY KEY,
                    simulator_id TEXT NOT NULL,
                    phone_number TEXT NOT NULL,
                    threshold_percentage REAL NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            # No foreign key to triggers: history outlives deleted triggers.
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notification_history (
                    id TEXT PRIMARY KEY,
                    trigger_id TEXT NOT NULL,
                    simulator_id TEXT NOT NULL,
                    phone_number TEXT NOT NULL,
                    threshold_percentage REAL NOT NULL,
                    actual_percentage REAL NOT NULL,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    sent_at TIMESTAMP NOT NULL,
                    notification_type TEXT NOT NULL DEFAULT 'threshold'
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notification_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_triggers_simulator
                ON notification_triggers(simulator_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_simulator
                ON notification_history(simulator_id, sent_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_trigger
                ON notification_history(trigger_id, phone_number, sent_at)
            """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
