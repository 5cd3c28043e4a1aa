"""Repository for the level catalog and its deletion log.

Provides CRUD operations for the content_units table. Deleting a level is
special: it closes the numbering gap and records a tombstone in the same
transaction, so the progress repair always knows which sequence number
disappeared.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from curriculum.db.database import Database

logger = structlog.get_logger(__name__)


@dataclass
class ContentUnit:
    """Level record from database."""

    unit_id: str
    unit_seq: int
    title: str = ""
    description: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def quiz_count(self) -> int:
        return len(self.payload.get("quizzes", []))

    @property
    def pronunciation_count(self) -> int:
        return len(self.payload.get("pronunciations", []))


@dataclass
class Tombstone:
    """Deletion-log entry for one removed level."""

    tombstone_id: int
    unit_id: str
    unit_seq: int
    status: Literal["pending", "repaired"]
    created_at: str
    affected_count: int | None = None
    repaired_at: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class RepairPendingError(Exception):
    """Raised when a level deletion is attempted while a repair is unfinished."""

    def __init__(self, tombstone: Tombstone):
        self.tombstone = tombstone
        super().__init__(
            f"Repair for deleted level {tombstone.unit_id} "
            f"(seq {tombstone.unit_seq}) has not completed"
        )


class CatalogStore:
    """Level catalog backed by the content_units table."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, unit_id: str) -> ContentUnit | None:
        """Get level by ID.

        Returns:
            ContentUnit if found, None otherwise
        """
        with self.db.connect("catalog.get") as conn:
            row = conn.execute(
                "SELECT * FROM content_units WHERE unit_id = ?", (unit_id,)
            ).fetchone()

        if row is None:
            return None

        return _row_to_unit(row)

    def get_by_seq(self, unit_seq: int) -> ContentUnit | None:
        """Get the level currently holding a sequence number."""
        with self.db.connect("catalog.get_by_seq") as conn:
            row = conn.execute(
                "SELECT * FROM content_units WHERE unit_seq = ? ORDER BY created_at LIMIT 1",
                (unit_seq,),
            ).fetchone()

        if row is None:
            return None

        return _row_to_unit(row)

    def list_units(self) -> list[ContentUnit]:
        """Get all levels ordered by unit_seq."""
        with self.db.connect("catalog.list") as conn:
            rows = conn.execute(
                "SELECT * FROM content_units ORDER BY unit_seq, created_at"
            ).fetchall()

        return [_row_to_unit(row) for row in rows]

    def count(self) -> int:
        with self.db.connect("catalog.count") as conn:
            return conn.execute("SELECT COUNT(*) FROM content_units").fetchone()[0]

    def add(
        self,
        unit_seq: int,
        title: str = "",
        description: str = "",
        payload: dict[str, Any] | None = None,
    ) -> ContentUnit:
        """Insert a new level with a store-assigned id.

        Raises:
            ValueError: If unit_seq is not a positive integer
        """
        if unit_seq < 1:
            raise ValueError(f"unit_seq must be >= 1, got {unit_seq}")

        unit_id = uuid.uuid4().hex
        with self.db.connect("catalog.add") as conn:
            conn.execute(
                """
                INSERT INTO content_units (unit_id, unit_seq, title, description, payload)
                VALUES (?, ?, ?, ?, ?)
                """,
                (unit_id, unit_seq, title, description, json.dumps(payload or {})),
            )
            row = conn.execute(
                "SELECT * FROM content_units WHERE unit_id = ?", (unit_id,)
            ).fetchone()

        logger.debug("catalog.unit_added", unit_id=unit_id, unit_seq=unit_seq)
        return _row_to_unit(row)

    def update(
        self,
        unit_id: str,
        unit_seq: int,
        title: str,
        description: str,
        payload: dict[str, Any],
    ) -> ContentUnit:
        """Update an existing level (edit screen).

        Raises:
            ValueError: If unit_id doesn't exist
        """
        with self.db.connect("catalog.update") as conn:
            cursor = conn.execute(
                """
                UPDATE content_units SET
                    unit_seq = ?,
                    title = ?,
                    description = ?,
                    payload = ?,
                    updated_at = datetime('now')
                WHERE unit_id = ?
                """,
                (unit_seq, title, description, json.dumps(payload), unit_id),
            )

            if cursor.rowcount == 0:
                raise ValueError(f"Level not found: {unit_id}")

            row = conn.execute(
                "SELECT * FROM content_units WHERE unit_id = ?", (unit_id,)
            ).fetchone()

        logger.debug("catalog.unit_updated", unit_id=unit_id)
        return _row_to_unit(row)

    def delete(self, unit_id: str) -> Tombstone | None:
        """Delete a level, close the numbering gap and log a tombstone.

        All three happen in one transaction. Only the consistency engine
        should call this: the tombstone it returns must be followed by a
        progress repair pass.

        Returns:
            The pending Tombstone, or None if the level does not exist

        Raises:
            RepairPendingError: If an earlier deletion is still unrepaired
        """
        with self.db.connect("catalog.delete") as conn:
            conn.execute("BEGIN IMMEDIATE")

            pending = conn.execute(
                "SELECT * FROM deletion_log WHERE status = 'pending' "
                "ORDER BY tombstone_id LIMIT 1"
            ).fetchone()
            if pending is not None:
                raise RepairPendingError(_row_to_tombstone(pending))

            row = conn.execute(
                "SELECT unit_seq FROM content_units WHERE unit_id = ?", (unit_id,)
            ).fetchone()
            if row is None:
                return None

            deleted_seq = row["unit_seq"]
            conn.execute("DELETE FROM content_units WHERE unit_id = ?", (unit_id,))
            shifted = conn.execute(
                """
                UPDATE content_units
                SET unit_seq = unit_seq - 1, updated_at = datetime('now')
                WHERE unit_seq > ?
                """,
                (deleted_seq,),
            ).rowcount
            cursor = conn.execute(
                "INSERT INTO deletion_log (unit_id, unit_seq) VALUES (?, ?)",
                (unit_id, deleted_seq),
            )
            tombstone_row = conn.execute(
                "SELECT * FROM deletion_log WHERE tombstone_id = ?",
                (cursor.lastrowid,),
            ).fetchone()

        tombstone = _row_to_tombstone(tombstone_row)
        logger.info(
            "catalog.unit_deleted",
            unit_id=unit_id,
            unit_seq=deleted_seq,
            renumbered=shifted,
            tombstone_id=tombstone.tombstone_id,
        )
        return tombstone

    # -------------------------------------------------------------------------
    # Deletion log
    # -------------------------------------------------------------------------

    def get_tombstone(self, tombstone_id: int) -> Tombstone | None:
        with self.db.connect("catalog.get_tombstone") as conn:
            row = conn.execute(
                "SELECT * FROM deletion_log WHERE tombstone_id = ?", (tombstone_id,)
            ).fetchone()

        return _row_to_tombstone(row) if row is not None else None

    def list_tombstones(self) -> list[Tombstone]:
        with self.db.connect("catalog.list_tombstones") as conn:
            rows = conn.execute(
                "SELECT * FROM deletion_log ORDER BY tombstone_id"
            ).fetchall()

        return [_row_to_tombstone(row) for row in rows]

    def pending_tombstones(self) -> list[Tombstone]:
        """Tombstones whose repair has not committed, oldest first."""
        with self.db.connect("catalog.pending_tombstones") as conn:
            rows = conn.execute(
                "SELECT * FROM deletion_log WHERE status = 'pending' ORDER BY tombstone_id"
            ).fetchall()

        return [_row_to_tombstone(row) for row in rows]

    def tombstones_after(self, tombstone_id: int) -> list[Tombstone]:
        """Tombstones newer than tombstone_id, whatever their status, oldest first."""
        with self.db.connect("catalog.tombstones_after") as conn:
            rows = conn.execute(
                "SELECT * FROM deletion_log WHERE tombstone_id > ? ORDER BY tombstone_id",
                (tombstone_id,),
            ).fetchall()

        return [_row_to_tombstone(row) for row in rows]

    def latest_tombstone_id(self) -> int:
        """Highest tombstone id ever issued, 0 when nothing was deleted."""
        with self.db.connect("catalog.latest_tombstone_id") as conn:
            value = conn.execute("SELECT MAX(tombstone_id) FROM deletion_log").fetchone()[0]

        return value or 0

    def mark_repaired(self, tombstone_id: int, affected_count: int) -> None:
        """Close a tombstone once every repair partition has committed."""
        with self.db.connect("catalog.mark_repaired") as conn:
            cursor = conn.execute(
                """
                UPDATE deletion_log
                SET status = 'repaired', affected_count = ?, repaired_at = datetime('now')
                WHERE tombstone_id = ?
                """,
                (affected_count, tombstone_id),
            )
            if cursor.rowcount == 0:
                raise ValueError(f"Tombstone not found: {tombstone_id}")

        logger.debug(
            "catalog.tombstone_repaired",
            tombstone_id=tombstone_id,
            affected_count=affected_count,
        )


def _row_to_unit(row: sqlite3.Row) -> ContentUnit:
    """Convert database row to ContentUnit."""
    return ContentUnit(
        unit_id=row["unit_id"],
        unit_seq=row["unit_seq"],
        title=row["title"],
        description=row["description"],
        payload=json.loads(row["payload"]) if row["payload"] else {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_tombstone(row: sqlite3.Row) -> Tombstone:
    return Tombstone(
        tombstone_id=row["tombstone_id"],
        unit_id=row["unit_id"],
        unit_seq=row["unit_seq"],
        status=row["status"],
        created_at=row["created_at"],
        affected_count=row["affected_count"],
        repaired_at=row["repaired_at"],
    )
