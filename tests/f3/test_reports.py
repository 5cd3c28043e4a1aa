"""Tests for dashboard and report aggregates."""

from datetime import datetime, timezone

import pytest

from curriculum.core.reports import (
    active_students,
    build_summary,
    completion_rate,
    leaderboard,
    registrations_per_day,
)
from curriculum.db.progress_repository import ProgressRecord


def _record(owner_id, completed=(), position=1, created_at="", **extra):
    return ProgressRecord(
        owner_id=owner_id,
        completed_units=set(completed),
        current_position=position,
        extra=extra,
        created_at=created_at,
    )


class TestCompletionRate:
    def test_rate(self):
        records = [_record("a", {1, 2}), _record("b", {1})]
        # 3 completions out of 2 students x 3 levels
        assert completion_rate(records, 3) == 50

    def test_no_students(self):
        assert completion_rate([], 5) == 0

    def test_no_levels(self):
        assert completion_rate([_record("a")], 0) == 0


class TestLeaderboard:
    def test_ordered_by_completed(self):
        records = [
            _record("a", {1}),
            _record("b", {1, 2, 3}, name="Bea"),
            _record("c", {1, 2}),
        ]

        top = leaderboard(records, top=2)

        assert [e.owner_id for e in top] == ["b", "c"]
        assert top[0].name == "Bea"
        assert top[0].completed_count == 3

    def test_ties_by_owner_id(self):
        records = [_record("z", {1}), _record("m", {2}), _record("a", {3})]
        assert [e.owner_id for e in leaderboard(records)] == ["a", "m", "z"]


class TestActiveStudents:
    def test_counts_streaks(self):
        records = [
            _record("a", streak=3),
            _record("b", streak=0),
            _record("c"),
            _record("d", streak="bad"),
        ]
        assert active_students(records) == 1


class TestRegistrationsPerDay:
    NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def test_buckets_oldest_first(self):
        records = [
            _record("a", created_at="2026-03-10 08:00:00"),
            _record("b", created_at="2026-03-10 09:00:00"),
            _record("c", created_at="2026-03-08 09:00:00"),
            _record("d", created_at="2026-02-01 09:00:00"),
        ]

        buckets = registrations_per_day(records, 3, now=self.NOW)

        assert buckets == {"2026-03-08": 1, "2026-03-09": 0, "2026-03-10": 2}

    def test_unparseable_dates_ignored(self):
        buckets = registrations_per_day([_record("a", created_at="yesterday")], 1, now=self.NOW)
        assert buckets == {"2026-03-10": 0}

    def test_invalid_days(self):
        with pytest.raises(ValueError):
            registrations_per_day([], 0)


class TestBuildSummary:
    def test_summary_from_stores(self, catalog, progress, five_levels, three_students):
        summary = build_summary(catalog, progress, top=2)

        assert summary.total_students == 3
        assert summary.total_units == 5
        # 4 completions out of 3 x 5
        assert summary.completion_rate == 27
        assert [e.owner_id for e in summary.top_students] == ["r1", "r2"]

    def test_summary_tracks_deletion(self, engine, catalog, progress, five_levels, three_students):
        engine.delete_unit(five_levels[0].unit_id)

        summary = build_summary(catalog, progress)

        assert summary.total_units == 4
        assert [e.completed_count for e in summary.top_students] == [2, 0, 0]
