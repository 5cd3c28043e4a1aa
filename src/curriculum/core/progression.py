"""Student progression: enrolment, level completion and bulk import.

Completing a level adds it to the student's history and unlocks the next
one when it was the current level. Replaying an older level changes nothing.

Every write here is expressed in the numbering of one deletion-log
position (the latest tombstone id at validation time) and stamped with it.
A deletion can commit and finish its repair scan while the write is in
flight, so after writing, the records are caught up with every tombstone
newer than their stamp until the log stops moving.
"""

from __future__ import annotations

from typing import Any, Iterable

import structlog

from curriculum.core.consistency_engine import apply_tombstones, partition
from curriculum.db.catalog_repository import CatalogStore
from curriculum.db.progress_repository import (
    ProgressRecord,
    ProgressRecordNotFoundError,
    ProgressStore,
    ProgressUpdate,
)

logger = structlog.get_logger(__name__)


class LevelNotAvailableError(Exception):
    """Raised when completing a sequence number that no level holds."""

    def __init__(self, unit_seq: int):
        self.unit_seq = unit_seq
        super().__init__(f"No level with sequence number {unit_seq}")


def enroll_student(
    progress: ProgressStore,
    owner_id: str,
    extra: dict[str, Any] | None = None,
) -> ProgressRecord:
    """Create the progress record for a newly registered student."""
    record = progress.enroll(owner_id, extra)
    logger.info("progression.enrolled", owner_id=owner_id)
    return record


def catch_up(
    catalog: CatalogStore,
    progress: ProgressStore,
    owner_ids: list[str],
    since_id: int,
) -> int:
    """Apply tombstones newer than since_id to the given records.

    Records that a repair pass already reached carry the tombstone and are
    skipped. Repeats until no newer tombstone shows up.

    Returns:
        Number of record writes
    """
    written = 0
    while True:
        newer = catalog.tombstones_after(since_id)
        if not newer:
            return written

        for batch in partition(owner_ids, progress.max_batch_size):
            written += len(
                progress.batch_apply(batch, lambda record: apply_tombstones(record, newer))
            )

        logger.info(
            "progression.caught_up",
            owners=len(owner_ids),
            from_tombstone_id=since_id,
            to_tombstone_id=newer[-1].tombstone_id,
        )
        since_id = newer[-1].tombstone_id


def complete_unit(
    catalog: CatalogStore,
    progress: ProgressStore,
    owner_id: str,
    unit_seq: int,
) -> ProgressRecord:
    """Mark a level as completed for a student.

    Returns:
        The updated progress record

    Raises:
        LevelNotAvailableError: If no level holds unit_seq
        ProgressRecordNotFoundError: If the student is not enrolled
    """
    latest_id = _validate_seq(catalog, unit_seq)

    if progress.get(owner_id) is None:
        raise ProgressRecordNotFoundError(owner_id)

    pending = [t for t in catalog.pending_tombstones() if t.tombstone_id <= latest_id]

    def transform(record: ProgressRecord) -> ProgressUpdate | None:
        completed = set(record.completed_units)
        position = record.current_position

        repaired = apply_tombstones(record, pending)
        if repaired is not None:
            completed = set(repaired.completed_units)
            position = repaired.current_position

        if unit_seq not in completed:
            completed.add(unit_seq)
            if unit_seq == position:
                position += 1

        marker = max(record.last_repair_id, latest_id)
        if (
            completed == record.completed_units
            and position == record.current_position
            and marker == record.last_repair_id
        ):
            return None

        return ProgressUpdate(
            completed_units=completed,
            current_position=position,
            last_repair_id=marker,
        )

    written = progress.batch_apply([owner_id], transform)
    logger.info(
        "progression.unit_completed",
        owner_id=owner_id,
        unit_seq=unit_seq,
        changed=bool(written),
    )

    if written:
        catch_up(catalog, progress, written, latest_id)

    updated = progress.get(owner_id)
    if updated is None:
        raise ProgressRecordNotFoundError(owner_id)
    return updated


def load_progress(
    catalog: CatalogStore,
    progress: ProgressStore,
    records: Iterable[ProgressRecord],
) -> int:
    """Load records whose values are in the current numbering.

    The records are stamped with the latest tombstone id so that pending
    repairs do not shift them a second time.

    Returns:
        Number of records written
    """
    latest_id = catalog.latest_tombstone_id()
    stamped = [
        ProgressRecord(
            owner_id=r.owner_id,
            completed_units=set(r.completed_units),
            current_position=r.current_position,
            extra=dict(r.extra),
            last_repair_id=latest_id,
        )
        for r in records
    ]
    count = progress.import_records(stamped)
    catch_up(catalog, progress, [r.owner_id for r in stamped], latest_id)

    logger.info("progression.imported", count=count, tombstone_id=latest_id)
    return count


def _validate_seq(catalog: CatalogStore, unit_seq: int) -> int:
    """Check unit_seq against a stable catalog numbering.

    Returns:
        The latest tombstone id the check was made against
    """
    while True:
        before = catalog.latest_tombstone_id()
        exists = catalog.get_by_seq(unit_seq) is not None
        if catalog.latest_tombstone_id() != before:
            # Renumbered during the check
            continue
        if not exists:
            raise LevelNotAvailableError(unit_seq)
        return before
