"""Tests for the progress record store."""

import pytest

from curriculum.db.progress_repository import (
    BatchTooLargeError,
    DuplicateProgressRecordError,
    ProgressRecord,
    ProgressRecordNotFoundError,
    ProgressStore,
    ProgressUpdate,
)


class TestEnroll:
    """Tests for creating records."""

    def test_enroll_defaults(self, progress):
        """New students start at level 1 with nothing completed."""
        record = progress.enroll("ana", {"name": "Ana", "streak": 0})

        assert record.owner_id == "ana"
        assert record.completed_units == set()
        assert record.current_position == 1
        assert record.extra == {"name": "Ana", "streak": 0}
        assert record.last_repair_id == 0

    def test_enroll_twice_raises(self, progress):
        progress.enroll("ana")
        with pytest.raises(DuplicateProgressRecordError):
            progress.enroll("ana")

    def test_get_missing_returns_none(self, progress):
        assert progress.get("nobody") is None


class TestImportRecords:
    def test_import_and_list(self, progress, three_students):
        records = progress.list_all()
        assert [r.owner_id for r in records] == ["r1", "r2", "r3"]
        assert records[0].completed_units == {1, 2, 3}
        assert progress.count() == 3

    def test_import_replaces_existing(self, progress):
        progress.enroll("ana")
        progress.import_records([ProgressRecord(owner_id="ana", current_position=3)])
        assert progress.get("ana").current_position == 3


class TestBatchWrite:
    """Tests for the atomic batch contract."""

    def test_batch_write_applies_all(self, progress, three_students):
        written = progress.batch_write(
            {
                "r1": ProgressUpdate(completed_units={1, 2}, current_position=3),
                "r2": ProgressUpdate(completed_units=set(), current_position=1),
            }
        )

        assert written == 2
        assert progress.get("r1").completed_units == {1, 2}
        assert progress.get("r1").current_position == 3
        assert progress.get("r2").completed_units == set()

    def test_batch_write_keeps_marker_when_none(self, progress, three_students):
        progress.batch_write({"r1": ProgressUpdate({1}, 2, last_repair_id=4)})
        progress.batch_write({"r1": ProgressUpdate({1}, 2)})
        assert progress.get("r1").last_repair_id == 4

    def test_batch_write_unknown_owner_applies_nothing(self, progress, three_students):
        """One bad owner rolls back the whole batch."""
        with pytest.raises(ProgressRecordNotFoundError):
            progress.batch_write(
                {
                    "r1": ProgressUpdate(completed_units=set(), current_position=1),
                    "ghost": ProgressUpdate(completed_units=set(), current_position=1),
                }
            )

        assert progress.get("r1").completed_units == {1, 2, 3}

    def test_batch_write_rejects_position_below_one(self, progress, three_students):
        with pytest.raises(ValueError):
            progress.batch_write({"r1": ProgressUpdate(completed_units=set(), current_position=0)})
        assert progress.get("r1").current_position == 4

    def test_batch_write_too_large(self, db):
        store = ProgressStore(db, max_batch_size=2)
        store.import_records([ProgressRecord(owner_id=f"s{i}") for i in range(3)])

        with pytest.raises(BatchTooLargeError) as exc_info:
            store.batch_write(
                {f"s{i}": ProgressUpdate(completed_units={1}, current_position=2) for i in range(3)}
            )

        assert exc_info.value.limit == 2
        assert all(r.completed_units == set() for r in store.list_all())

    def test_batch_write_empty(self, progress):
        assert progress.batch_write({}) == 0

    def test_invalid_max_batch_size(self, db):
        with pytest.raises(ValueError):
            ProgressStore(db, max_batch_size=0)


class TestBatchApply:
    """Tests for read-transform-write batches."""

    def test_transform_sees_current_state(self, progress, three_students):
        seen = {}

        def transform(record):
            seen[record.owner_id] = record.current_position
            return ProgressUpdate(record.completed_units, record.current_position + 1)

        written = progress.batch_apply(["r1", "r2"], transform)

        assert written == ["r1", "r2"]
        assert seen == {"r1": 4, "r2": 2}
        assert progress.get("r1").current_position == 5

    def test_none_results_are_not_written(self, progress, three_students):
        before = progress.get("r2").updated_at

        written = progress.batch_apply(["r2"], lambda record: None)

        assert written == []
        assert progress.get("r2").updated_at == before

    def test_missing_owner_skipped(self, progress, three_students):
        written = progress.batch_apply(
            ["ghost", "r3"],
            lambda record: ProgressUpdate({1}, 2),
        )
        assert written == ["r3"]

    def test_transform_error_rolls_back(self, progress, three_students):
        def transform(record):
            if record.owner_id == "r2":
                raise RuntimeError("bad record")
            return ProgressUpdate(set(), 1)

        with pytest.raises(RuntimeError):
            progress.batch_apply(["r1", "r2"], transform)

        assert progress.get("r1").completed_units == {1, 2, 3}

    def test_batch_apply_too_large(self, db):
        store = ProgressStore(db, max_batch_size=1)
        with pytest.raises(BatchTooLargeError):
            store.batch_apply(["a", "b"], lambda record: None)


class TestListRecent:
    """Tests for the student list ordering and search."""

    @pytest.fixture
    def dated_students(self, db):
        with db.connect() as conn:
            conn.executemany(
                "INSERT INTO progress_records (owner_id, extra, created_at) VALUES (?, ?, ?)",
                [
                    ("u1", '{"name": "Ana Lopez", "email": "ana@example.com"}', "2026-01-01 10:00:00"),
                    ("u2", '{"name": "Bruno", "email": "bruno@school.org"}', "2026-03-01 10:00:00"),
                    ("u3", '{"name": "Carla", "email": "carla@example.com"}', "2026-02-01 10:00:00"),
                ],
            )

    def test_newest_first(self, progress, dated_students):
        assert [r.owner_id for r in progress.list_recent()] == ["u2", "u3", "u1"]

    def test_search_by_name_case_insensitive(self, progress, dated_students):
        assert [r.owner_id for r in progress.list_recent("ana")] == ["u1"]

    def test_search_by_email(self, progress, dated_students):
        assert [r.owner_id for r in progress.list_recent("EXAMPLE.COM")] == ["u3", "u1"]

    def test_search_without_match(self, progress, dated_students):
        assert progress.list_recent("zoe") == []
