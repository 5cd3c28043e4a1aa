"""Read-side aggregates for the admin dashboard and reports.

Pure functions over progress records; nothing here writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from curriculum.db.catalog_repository import CatalogStore
from curriculum.db.progress_repository import ProgressRecord, ProgressStore

# Report periods offered by the reports screen, in days ("all" is capped)
PERIODS: dict[str, int] = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "all": 365,
}

DEFAULT_TOP = 5


@dataclass
class LeaderboardEntry:
    owner_id: str
    completed_count: int
    current_position: int
    name: str = ""


@dataclass
class CatalogSummary:
    """Dashboard numbers."""

    total_students: int
    total_units: int
    completion_rate: int
    active_students: int
    top_students: list[LeaderboardEntry] = field(default_factory=list)


def completion_rate(records: list[ProgressRecord], total_units: int) -> int:
    """Completed levels over (students x levels), as a whole percent."""
    if not records or total_units <= 0:
        return 0
    total_completed = sum(r.completed_count for r in records)
    return round(total_completed / (len(records) * total_units) * 100)


def leaderboard(records: list[ProgressRecord], top: int = DEFAULT_TOP) -> list[LeaderboardEntry]:
    """Students with the most completed levels, best first.

    Ties keep owner_id order so the ranking is stable between calls.
    """
    ranked = sorted(records, key=lambda r: (-r.completed_count, r.owner_id))
    return [
        LeaderboardEntry(
            owner_id=r.owner_id,
            completed_count=r.completed_count,
            current_position=r.current_position,
            name=str(r.extra.get("name", "")),
        )
        for r in ranked[:top]
    ]


def active_students(records: list[ProgressRecord]) -> int:
    """Students on an ongoing streak."""
    return sum(1 for r in records if _as_int(r.extra.get("streak")) > 0)


def registrations_per_day(
    records: list[ProgressRecord],
    days: int,
    now: datetime | None = None,
) -> dict[str, int]:
    """Enrolments per calendar day over the last `days` days, oldest first.

    Days without enrolments are present with 0.
    """
    if days < 1:
        raise ValueError(f"days must be >= 1, got {days}")

    today = (now or datetime.now(timezone.utc)).date()
    first_day = today - timedelta(days=days - 1)
    buckets = {(first_day + timedelta(days=i)).isoformat(): 0 for i in range(days)}

    for record in records:
        created = _parse_date(record.created_at)
        if created is None:
            continue
        key = created.isoformat()
        if key in buckets:
            buckets[key] += 1

    return buckets


def build_summary(
    catalog: CatalogStore,
    progress: ProgressStore,
    top: int = DEFAULT_TOP,
) -> CatalogSummary:
    records = progress.list_all()
    total_units = catalog.count()
    return CatalogSummary(
        total_students=len(records),
        total_units=total_units,
        completion_rate=completion_rate(records, total_units),
        active_students=active_students(records),
        top_students=leaderboard(records, top),
    )


def _parse_date(value: str) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def _as_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
