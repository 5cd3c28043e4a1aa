"""Read-only audit of catalog and progress consistency.

Checks that every completed level a student holds still exists, that
positions are valid, and that the catalog numbering is dense.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

import structlog

from curriculum.db.catalog_repository import CatalogStore, Tombstone
from curriculum.db.progress_repository import ProgressStore

logger = structlog.get_logger(__name__)


@dataclass
class IntegrityReport:
    """Result of an integrity check."""

    total_units: int
    total_records: int
    orphaned: dict[str, list[int]] = field(default_factory=dict)
    invalid_positions: dict[str, int] = field(default_factory=dict)
    gaps: list[int] = field(default_factory=list)
    duplicates: list[int] = field(default_factory=list)
    pending: list[Tombstone] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (
            self.orphaned or self.invalid_positions or self.gaps or self.duplicates or self.pending
        )


def find_gaps(sequence_numbers: list[int]) -> list[int]:
    """Sequence numbers missing between 1 and the highest live one."""
    if not sequence_numbers:
        return []
    live = set(sequence_numbers)
    return [seq for seq in range(1, max(live) + 1) if seq not in live]


def check_integrity(catalog: CatalogStore, progress: ProgressStore) -> IntegrityReport:
    """Audit the stores. Never writes."""
    units = catalog.list_units()
    records = progress.list_all()
    sequence_numbers = [u.unit_seq for u in units]
    live = set(sequence_numbers)

    report = IntegrityReport(total_units=len(units), total_records=len(records))
    report.gaps = find_gaps(sequence_numbers)
    report.duplicates = sorted(seq for seq, n in Counter(sequence_numbers).items() if n > 1)
    report.pending = catalog.pending_tombstones()

    for record in records:
        missing = sorted(seq for seq in record.completed_units if seq not in live)
        if missing:
            report.orphaned[record.owner_id] = missing
        if record.current_position < 1:
            report.invalid_positions[record.owner_id] = record.current_position

    logger.info(
        "integrity.checked",
        ok=report.ok,
        orphaned=len(report.orphaned),
        gaps=len(report.gaps),
        pending=len(report.pending),
    )
    return report
