"""Per-run audit trail stores.

The trading core hands each run's audit record to a store by key and
data. Nothing in the core reads the trail back, so losing it on restart
never affects trading.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from ..errors import PersistenceError


class AuditStore(ABC):
    """Key/value store for per-run audit records."""

    @abstractmethod
    def save(self, key: str, data: dict[str, Any]) -> None:
        """Store data under key, replacing any previous value."""

    @abstractmethod
    def load(self, key: str) -> Optional[dict[str, Any]]:
        """Return the data stored under key, or None."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """Stored keys starting with prefix, in insertion order."""


class InMemoryAuditStore(AuditStore):
    """Audit store kept in a dictionary for the life of the process."""

    def __init__(self):
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, key: str, data: dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = dict(data)

    def load(self, key: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._records.get(key)
            return dict(record) if record is not None else None

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._records if key.startswith(prefix)]


class SqliteAuditStore(AuditStore):
    """SQLite-based audit store."""

    def __init__(self, db_path: str = "audit.db"):
        self.db_path = Path(db_path)
        self.logger = structlog.get_logger("audit.store")
        self._lock = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_key TEXT NOT NULL UNIQUE,
                    record_data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error("Database error", error=str(e))
            raise PersistenceError(str(e), operation="connection", target=str(self.db_path)) from e
        finally:
            if conn:
                conn.close()

    def save(self, key: str, data: dict[str, Any]) -> None:
        """
        Store an audit record.

        Args:
            key: Record key
            data: JSON-serializable record data

        Raises:
            PersistenceError: If the record cannot be written
        """
        try:
            payload = json.dumps(data, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Audit record is not serializable: {e}",
                                   operation="save", target=key) from e

        with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO audit_records (record_key, record_data, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(record_key) DO UPDATE SET record_data = excluded.record_data
                    """,
                    (key, payload, datetime.now(timezone.utc).isoformat())
                )
                conn.commit()

        self.logger.debug("Audit record stored", key=key)

    def load(self, key: str) -> Optional[dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT record_data FROM audit_records WHERE record_key = ?", (key,)
            ).fetchone()
        return json.loads(row["record_data"]) if row else None

    def keys(self, prefix: str = "") -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT record_key FROM audit_records WHERE record_key LIKE ? ORDER BY id",
                (prefix + "%",)
            ).fetchall()
        # LIKE treats _ as a wildcard and ignores ASCII case
        return [row["record_key"] for row in rows if row["record_key"].startswith(prefix)]

    def get_stats(self) -> dict[str, Any]:
        """Get storage statistics."""
        with self._get_connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM audit_records").fetchone()[0]
        return {"total_records": total, "db_path": str(self.db_path)}
