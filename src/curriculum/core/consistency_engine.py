"""Consistency engine module.

Responsibilities:
- Delete a level from the catalog (gap closed, tombstone logged)
- Repair every affected progress record in atomic, size-capped batches
- Re-run unfinished repairs from the deletion log

A deletion happens in two phases that cannot share a transaction: the
catalog phase and the progress repair. Between them a record may still
reference the removed sequence number. The repair is idempotent, so an
interrupted run is finished by running it again (repair_pending).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence, TypeVar

import structlog

from curriculum.db.catalog_repository import CatalogStore, RepairPendingError, Tombstone
from curriculum.db.database import StoreUnavailableError
from curriculum.db.progress_repository import ProgressRecord, ProgressStore, ProgressUpdate

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class RepairResult:
    """Outcome of one repair pass over the progress records."""

    tombstone_id: int
    unit_id: str
    unit_seq: int
    affected_count: int
    batches: int


@dataclass
class DeletionResult:
    """Outcome of a successful level deletion."""

    unit_id: str
    unit_seq: int
    tombstone_id: int
    affected_count: int
    batches: int


class UnitNotFoundError(Exception):
    """Level to delete does not exist. Nothing was changed."""

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Level not found: {unit_id}")


class PartialFailureError(Exception):
    """Level was deleted but its progress repair did not fully commit.

    The catalog and the progress records are inconsistent until a repair
    pass (ConsistencyEngine.repair_pending) succeeds.
    """

    def __init__(self, tombstone: Tombstone, committed_count: int, reason: str):
        self.tombstone = tombstone
        self.unit_id = tombstone.unit_id
        self.unit_seq = tombstone.unit_seq
        self.committed_count = committed_count
        self.reason = reason
        super().__init__(
            f"Level {tombstone.unit_id} (seq {tombstone.unit_seq}) was deleted but "
            f"progress repair did not complete ({committed_count} record(s) committed). "
            f"Run the repair again to finish it."
        )


# =============================================================================
# REPAIR RULES
# =============================================================================


def repair_record(record: ProgressRecord, tombstone: Tombstone) -> ProgressUpdate | None:
    """Compute the repaired state of one record, or None if it is unaffected.

    Rules for deleted sequence number d:
    - d is removed from completed_units
    - completed values above d move down by one (the catalog closed the gap)
    - current_position above d moves down by one
    Records that already carry this tombstone are left alone.

    A record that skipped ahead (completed values above d, position at or
    below d, d itself never completed) is still written: its values follow
    the catalog renumbering.
    """
    if record.last_repair_id >= tombstone.tombstone_id:
        return None

    deleted_seq = tombstone.unit_seq
    completed = {
        seq - 1 if seq > deleted_seq else seq
        for seq in record.completed_units
        if seq != deleted_seq
    }
    position = record.current_position
    if position > deleted_seq:
        position -= 1

    if completed == record.completed_units and position == record.current_position:
        return None

    return ProgressUpdate(
        completed_units=completed,
        current_position=position,
        last_repair_id=tombstone.tombstone_id,
    )


def apply_tombstones(
    record: ProgressRecord, tombstones: Sequence[Tombstone]
) -> ProgressUpdate | None:
    """Apply several deletions in log order, or None if none changes the record."""
    current = record
    changed = False
    for tombstone in tombstones:
        update = repair_record(current, tombstone)
        if update is None:
            continue
        changed = True
        current = ProgressRecord(
            owner_id=record.owner_id,
            completed_units=update.completed_units,
            current_position=update.current_position,
            last_repair_id=tombstone.tombstone_id,
        )

    if not changed:
        return None

    return ProgressUpdate(
        completed_units=current.completed_units,
        current_position=current.current_position,
        last_repair_id=current.last_repair_id,
    )


def partition(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split items into consecutive chunks of at most size."""
    if size < 1:
        raise ValueError(f"partition size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


# =============================================================================
# ENGINE
# =============================================================================


class ConsistencyEngine:
    """Deletes levels and keeps progress records pointing at live levels.

    Store handles are injected; the engine holds no other state.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        progress: ProgressStore,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.progress = progress
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def delete_unit(self, unit_id: str) -> DeletionResult:
        """Delete a level and repair all progress records that depend on it.

        The caller is responsible for having asked the admin to confirm.

        Raises:
            UnitNotFoundError: Level does not exist (nothing changed)
            PartialFailureError: Level deleted, repair incomplete; or an
                earlier deletion's repair could not be finished first
            StoreUnavailableError: Store unreachable before anything changed
        """
        # An unfinished earlier repair must land before the numbering moves again
        self.repair_pending()

        unit = self._call("catalog.get", self.catalog.get, unit_id)
        if unit is None:
            logger.info("engine.unit_not_found", unit_id=unit_id)
            raise UnitNotFoundError(unit_id)

        deleted_seq = unit.unit_seq
        logger.info("engine.delete_started", unit_id=unit_id, unit_seq=deleted_seq)

        tombstone = self._delete_from_catalog(unit_id)
        if tombstone is None:
            logger.info("engine.unit_vanished", unit_id=unit_id)
            raise UnitNotFoundError(unit_id)

        if tombstone.unit_seq != deleted_seq:
            logger.warning(
                "engine.unit_seq_moved",
                unit_id=unit_id,
                read_seq=deleted_seq,
                deleted_seq=tombstone.unit_seq,
            )

        repair = self._run_repair(tombstone)

        logger.info(
            "engine.delete_completed",
            unit_id=unit_id,
            unit_seq=tombstone.unit_seq,
            affected_count=repair.affected_count,
            batches=repair.batches,
        )
        return DeletionResult(
            unit_id=unit_id,
            unit_seq=tombstone.unit_seq,
            tombstone_id=tombstone.tombstone_id,
            affected_count=repair.affected_count,
            batches=repair.batches,
        )

    def repair_pending(self) -> list[RepairResult]:
        """Finish every repair left pending by an earlier failed deletion.

        Safe to call at any time; returns an empty list when nothing is pending.
        """
        pending = self._call("catalog.pending_tombstones", self.catalog.pending_tombstones)
        if pending:
            logger.info("engine.pending_repairs_found", count=len(pending))

        return [self._run_repair(tombstone) for tombstone in pending]

    def _delete_from_catalog(self, unit_id: str) -> Tombstone | None:
        try:
            return self._call("catalog.delete", self.catalog.delete, unit_id)
        except RepairPendingError as e:
            # Another run left a tombstone between our drain and our delete
            logger.warning(
                "engine.repair_pending_before_delete",
                unit_id=unit_id,
                pending_tombstone_id=e.tombstone.tombstone_id,
            )
            self.repair_pending()

        try:
            return self._call("catalog.delete", self.catalog.delete, unit_id)
        except RepairPendingError as e:
            logger.error(
                "engine.repair_still_pending",
                unit_id=unit_id,
                pending_tombstone_id=e.tombstone.tombstone_id,
            )
            raise PartialFailureError(
                e.tombstone, 0, "an earlier deletion is still being repaired"
            ) from e

    def _run_repair(self, tombstone: Tombstone) -> RepairResult:
        committed = 0
        batches = 0

        def transform(record: ProgressRecord) -> ProgressUpdate | None:
            return repair_record(record, tombstone)

        try:
            records = self._call("progress.list_all", self.progress.list_all)
            candidates = [r.owner_id for r in records if transform(r) is not None]

            logger.debug(
                "engine.repair_scanned",
                tombstone_id=tombstone.tombstone_id,
                scanned=len(records),
                candidates=len(candidates),
            )

            for batch in partition(candidates, self.progress.max_batch_size):
                written = self._call(
                    "progress.batch_apply", self.progress.batch_apply, batch, transform
                )
                committed += len(written)
                batches += 1
                logger.debug(
                    "engine.batch_committed",
                    tombstone_id=tombstone.tombstone_id,
                    batch=batches,
                    written=len(written),
                )

            self._call(
                "catalog.mark_repaired",
                self.catalog.mark_repaired,
                tombstone.tombstone_id,
                committed,
            )
        except StoreUnavailableError as e:
            logger.error(
                "engine.repair_failed",
                tombstone_id=tombstone.tombstone_id,
                unit_id=tombstone.unit_id,
                unit_seq=tombstone.unit_seq,
                committed=committed,
                error=str(e),
            )
            raise PartialFailureError(tombstone, committed, e.reason) from e

        logger.info(
            "engine.repair_committed",
            tombstone_id=tombstone.tombstone_id,
            affected_count=committed,
            batches=batches,
        )
        return RepairResult(
            tombstone_id=tombstone.tombstone_id,
            unit_id=tombstone.unit_id,
            unit_seq=tombstone.unit_seq,
            affected_count=committed,
            batches=batches,
        )

    def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Call a store operation, retrying transient failures with backoff."""
        attempt = 0
        while True:
            try:
                return fn(*args)
            except StoreUnavailableError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "engine.store_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=e.reason,
                )
                self._sleep(delay)
