"""Repository for student progress records.

One row per student. Writes go through atomic batches capped at
max_batch_size, mirroring the per-commit write limit of the document
store the admin app was built against.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

import structlog

from curriculum.db.database import Database

logger = structlog.get_logger(__name__)

# Writes allowed in one atomic batch
DEFAULT_MAX_BATCH_SIZE = 500


@dataclass
class ProgressRecord:
    """Progress record from database."""

    owner_id: str
    completed_units: set[int] = field(default_factory=set)
    current_position: int = 1
    extra: dict[str, Any] = field(default_factory=dict)
    last_repair_id: int = 0
    created_at: str = ""
    updated_at: str = ""

    @property
    def completed_count(self) -> int:
        return len(self.completed_units)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "owner_id": self.owner_id,
            "completed_units": sorted(self.completed_units),
            "current_position": self.current_position,
            "extra": self.extra,
            "last_repair_id": self.last_repair_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ProgressUpdate:
    """New field values for one progress record.

    last_repair_id is left untouched when None.
    """

    completed_units: set[int]
    current_position: int
    last_repair_id: int | None = None


class BatchTooLargeError(ValueError):
    """Raised when a batch exceeds the store's per-commit write limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Batch of {size} writes exceeds limit of {limit}")


class ProgressRecordNotFoundError(Exception):
    """Raised when a write targets a student without a progress record."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Progress record not found: {owner_id}")


class DuplicateProgressRecordError(Exception):
    """Raised when enrolling a student twice."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Progress record already exists: {owner_id}")


class ProgressStore:
    """Progress records backed by the progress_records table."""

    def __init__(self, db: Database, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self.db = db
        self.max_batch_size = max_batch_size

    def get(self, owner_id: str) -> ProgressRecord | None:
        with self.db.connect("progress.get") as conn:
            row = conn.execute(
                "SELECT * FROM progress_records WHERE owner_id = ?", (owner_id,)
            ).fetchone()

        return _row_to_record(row) if row is not None else None

    def list_all(self) -> list[ProgressRecord]:
        """Get all progress records, ordered by owner_id."""
        with self.db.connect("progress.list_all") as conn:
            rows = conn.execute(
                "SELECT * FROM progress_records ORDER BY owner_id"
            ).fetchall()

        return [_row_to_record(row) for row in rows]

    def list_recent(self, query: str | None = None) -> list[ProgressRecord]:
        """Newest students first, optionally filtered by name or email.

        The match is a case-insensitive substring test on extra["name"],
        extra["email"] and owner_id.
        """
        with self.db.connect("progress.list_recent") as conn:
            rows = conn.execute(
                "SELECT * FROM progress_records ORDER BY created_at DESC, owner_id"
            ).fetchall()

        records = [_row_to_record(row) for row in rows]
        if not query:
            return records

        needle = query.lower()
        return [
            r
            for r in records
            if needle in str(r.extra.get("name", "")).lower()
            or needle in str(r.extra.get("email", "")).lower()
            or needle in r.owner_id.lower()
        ]

    def count(self) -> int:
        with self.db.connect("progress.count") as conn:
            return conn.execute("SELECT COUNT(*) FROM progress_records").fetchone()[0]

    def enroll(
        self,
        owner_id: str,
        extra: dict[str, Any] | None = None,
    ) -> ProgressRecord:
        """Create a fresh record at position 1.

        Raises:
            DuplicateProgressRecordError: If the student already has a record
        """
        try:
            with self.db.connect("progress.enroll") as conn:
                conn.execute(
                    "INSERT INTO progress_records (owner_id, extra) VALUES (?, ?)",
                    (owner_id, json.dumps(extra or {})),
                )
                row = conn.execute(
                    "SELECT * FROM progress_records WHERE owner_id = ?", (owner_id,)
                ).fetchone()
        except sqlite3.IntegrityError as e:
            raise DuplicateProgressRecordError(owner_id) from e

        logger.debug("progress.enrolled", owner_id=owner_id)
        return _row_to_record(row)

    def import_records(self, records: Iterable[ProgressRecord]) -> int:
        """Insert or replace many records in one transaction.

        Returns:
            Number of records written
        """
        rows = [
            (
                r.owner_id,
                _encode_units(r.completed_units),
                r.current_position,
                json.dumps(r.extra),
                r.last_repair_id,
            )
            for r in records
        ]
        with self.db.connect("progress.import") as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO progress_records
                    (owner_id, completed_units, current_position, extra, last_repair_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )

        logger.info("progress.imported", count=len(rows))
        return len(rows)

    def batch_write(self, updates: Mapping[str, ProgressUpdate]) -> int:
        """Apply updates atomically: every write lands or none does.

        Raises:
            BatchTooLargeError: If len(updates) exceeds max_batch_size
            ProgressRecordNotFoundError: If any owner has no record (nothing applied)
        """
        self._check_size(len(updates))
        if not updates:
            return 0

        with self.db.connect("progress.batch_write") as conn:
            conn.execute("BEGIN IMMEDIATE")
            for owner_id, update in updates.items():
                _write_update(conn, owner_id, update)

        logger.debug("progress.batch_written", count=len(updates))
        return len(updates)

    def batch_apply(
        self,
        owner_ids: list[str],
        transform: Callable[[ProgressRecord], ProgressUpdate | None],
    ) -> list[str]:
        """Re-read records and write transform results in one transaction.

        The records are read under the write lock, so transform always sees
        the state it is about to overwrite. Records for which transform
        returns None are not written; owners without a record are skipped.

        Returns:
            owner_ids that were written
        """
        self._check_size(len(owner_ids))
        if not owner_ids:
            return []

        written: list[str] = []
        with self.db.connect("progress.batch_apply") as conn:
            conn.execute("BEGIN IMMEDIATE")
            for owner_id in owner_ids:
                row = conn.execute(
                    "SELECT * FROM progress_records WHERE owner_id = ?", (owner_id,)
                ).fetchone()
                if row is None:
                    logger.debug("progress.batch_apply_missing", owner_id=owner_id)
                    continue

                update = transform(_row_to_record(row))
                if update is None:
                    continue

                _write_update(conn, owner_id, update)
                written.append(owner_id)

        logger.debug("progress.batch_applied", requested=len(owner_ids), written=len(written))
        return written

    def _check_size(self, size: int) -> None:
        if size > self.max_batch_size:
            raise BatchTooLargeError(size, self.max_batch_size)


def _write_update(conn: sqlite3.Connection, owner_id: str, update: ProgressUpdate) -> None:
    if update.current_position < 1:
        raise ValueError(
            f"current_position must be >= 1 for {owner_id}, got {update.current_position}"
        )

    if update.last_repair_id is None:
        cursor = conn.execute(
            """
            UPDATE progress_records
            SET completed_units = ?, current_position = ?, updated_at = datetime('now')
            WHERE owner_id = ?
            """,
            (_encode_units(update.completed_units), update.current_position, owner_id),
        )
    else:
        cursor = conn.execute(
            """
            UPDATE progress_records
            SET completed_units = ?, current_position = ?, last_repair_id = ?,
                updated_at = datetime('now')
            WHERE owner_id = ?
            """,
            (
                _encode_units(update.completed_units),
                update.current_position,
                update.last_repair_id,
                owner_id,
            ),
        )

    if cursor.rowcount == 0:
        raise ProgressRecordNotFoundError(owner_id)


def _encode_units(units: Iterable[int]) -> str:
    return json.dumps(sorted(set(units)))


def _row_to_record(row: sqlite3.Row) -> ProgressRecord:
    """Convert database row to ProgressRecord."""
    return ProgressRecord(
        owner_id=row["owner_id"],
        completed_units=set(json.loads(row["completed_units"])) if row["completed_units"] else set(),
        current_position=row["current_position"],
        extra=json.loads(row["extra"]) if row["extra"] else {},
        last_repair_id=row["last_repair_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
