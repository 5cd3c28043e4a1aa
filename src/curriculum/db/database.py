"""SQLite database connection and schema management.

Provides connection management and schema initialization for the
level catalog, the progress records and the deletion log.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/curriculum.db")

# Seconds SQLite waits on a locked database before giving up
DEFAULT_TIMEOUT_SECONDS = 5.0


class StoreUnavailableError(Exception):
    """Transient failure talking to the underlying store."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


class Database:
    """Handle on one SQLite database file.

    Store classes receive a Database instead of reaching for a global
    connection, so the lifecycle belongs to whoever builds them.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
        self.timeout_seconds = timeout_seconds

    def init_schema(self) -> None:
        """Create the database file and all tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connect() as conn:
            _create_schema(conn)

        logger.info("database.initialized", path=str(self.db_path))

    @contextmanager
    def connect(
        self, operation: str = "query"
    ) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection as context manager.

        Commits on success and rolls back on any error. SQLite operational
        errors (locked database, unreadable file) surface as
        StoreUnavailableError.

        Example:
            with db.connect("catalog.list") as conn:
                rows = conn.execute("SELECT * FROM content_units").fetchall()
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(operation, str(e)) from e

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")

        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            logger.warning("database.operational_error", operation=operation, error=str(e))
            raise StoreUnavailableError(operation, str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- Levels of the curriculum. unit_seq is the pedagogical order;
        -- uniqueness is kept by the callers, not by the table.
        CREATE TABLE IF NOT EXISTS content_units (
            unit_id TEXT PRIMARY KEY,
            unit_seq INTEGER NOT NULL CHECK(unit_seq >= 1),
            title TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            payload TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- One progress record per student
        CREATE TABLE IF NOT EXISTS progress_records (
            owner_id TEXT PRIMARY KEY,
            completed_units TEXT NOT NULL DEFAULT '[]',
            current_position INTEGER NOT NULL DEFAULT 1 CHECK(current_position >= 1),
            extra TEXT NOT NULL DEFAULT '{}',
            last_repair_id INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Deletion log: one row per deleted level, drives the repair pass
        CREATE TABLE IF NOT EXISTS deletion_log (
            tombstone_id INTEGER PRIMARY KEY AUTOINCREMENT,
            unit_id TEXT NOT NULL,
            unit_seq INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'repaired')),
            affected_count INTEGER,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            repaired_at TEXT
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_units_seq ON content_units(unit_seq);
        CREATE INDEX IF NOT EXISTS idx_deletion_log_status ON deletion_log(status);
        """
    )
