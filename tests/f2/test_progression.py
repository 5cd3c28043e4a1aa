"""Tests for enrolment, level completion and bulk import."""

from unittest.mock import patch

import pytest

from curriculum.core.integrity import check_integrity
from curriculum.core.progression import (
    LevelNotAvailableError,
    catch_up,
    complete_unit,
    enroll_student,
    load_progress,
)
from curriculum.db.progress_repository import (
    DuplicateProgressRecordError,
    ProgressRecord,
    ProgressRecordNotFoundError,
)


def _delete_before_first_write(progress, engine, unit_id):
    """batch_apply wrapper that runs a whole deletion just before the first write."""
    real = progress.batch_apply
    state = {"deleted": False}

    def racing(owner_ids, transform):
        if not state["deleted"]:
            state["deleted"] = True
            engine.delete_unit(unit_id)
        return real(owner_ids, transform)

    return racing


class TestEnrollStudent:
    def test_enroll(self, progress):
        record = enroll_student(progress, "ana", {"name": "Ana"})
        assert record.current_position == 1
        assert record.extra["name"] == "Ana"

    def test_enroll_twice(self, progress):
        enroll_student(progress, "ana")
        with pytest.raises(DuplicateProgressRecordError):
            enroll_student(progress, "ana")


class TestCompleteUnit:
    def test_completing_current_level_unlocks_next(self, catalog, progress, five_levels):
        enroll_student(progress, "ana")

        record = complete_unit(catalog, progress, "ana", 1)

        assert record.completed_units == {1}
        assert record.current_position == 2

    def test_replaying_level_changes_nothing(self, catalog, progress, five_levels, three_students):
        before = progress.get("r1")

        record = complete_unit(catalog, progress, "r1", 2)

        assert record.completed_units == {1, 2, 3}
        assert record.current_position == 4
        assert record.updated_at == before.updated_at

    def test_completing_ahead_does_not_move_position(self, catalog, progress, five_levels):
        enroll_student(progress, "ana")

        record = complete_unit(catalog, progress, "ana", 3)

        assert record.completed_units == {3}
        assert record.current_position == 1

    def test_unknown_level(self, catalog, progress, five_levels):
        enroll_student(progress, "ana")
        with pytest.raises(LevelNotAvailableError) as exc_info:
            complete_unit(catalog, progress, "ana", 9)
        assert exc_info.value.unit_seq == 9

    def test_unknown_student(self, catalog, progress, five_levels):
        with pytest.raises(ProgressRecordNotFoundError):
            complete_unit(catalog, progress, "ghost", 1)

    def test_new_student_marked_with_latest_deletion(
        self, engine, catalog, progress, five_levels
    ):
        """Records written after a deletion are not repaired by it again."""
        result = engine.delete_unit(five_levels[4].unit_id)
        enroll_student(progress, "ana")

        record = complete_unit(catalog, progress, "ana", 1)

        assert record.last_repair_id == result.tombstone_id


class TestCompletionDuringPendingRepair:
    """A completion racing an unfinished deletion repair."""

    def test_pending_repair_applied_before_completion(
        self, engine, catalog, progress, five_levels, three_students
    ):
        # Catalog phase done, repair not yet run: old level 4 is now level 3
        tombstone = catalog.delete(five_levels[2].unit_id)

        record = complete_unit(catalog, progress, "r1", 3)

        # {1,2,3} repaired to {1,2}, then new level 3 completed
        assert record.completed_units == {1, 2, 3}
        assert record.current_position == 4
        assert record.last_repair_id == tombstone.tombstone_id

    def test_repair_pass_skips_completed_record(
        self, engine, catalog, progress, five_levels, three_students
    ):
        catalog.delete(five_levels[2].unit_id)
        complete_unit(catalog, progress, "r1", 3)

        results = engine.repair_pending()

        assert results[0].affected_count == 0
        record = progress.get("r1")
        assert record.completed_units == {1, 2, 3}
        assert record.current_position == 4

    def test_deletion_finishing_during_completion_write(self, engine, catalog, progress):
        """A completion that lands after a full delete-and-repair is caught up."""
        levels = [catalog.add(seq, f"Level {seq}") for seq in range(1, 4)]
        progress.import_records(
            [ProgressRecord(owner_id="s", completed_units={1, 2}, current_position=3)]
        )

        racing = _delete_before_first_write(progress, engine, levels[2].unit_id)
        with patch.object(progress, "batch_apply", side_effect=racing):
            record = complete_unit(catalog, progress, "s", 3)

        # Level 3 is gone, so its completion goes with it
        assert record.completed_units == {1, 2}
        assert record.current_position == 3
        assert record.last_repair_id == catalog.latest_tombstone_id()
        assert check_integrity(catalog, progress).ok
        assert engine.repair_pending() == []

    def test_deletion_below_completed_level_shifts_completion(
        self, engine, catalog, progress, five_levels
    ):
        enroll_student(progress, "ana")

        racing = _delete_before_first_write(progress, engine, five_levels[0].unit_id)
        with patch.object(progress, "batch_apply", side_effect=racing):
            record = complete_unit(catalog, progress, "ana", 3)

        # Old level 3 is level 2 after the deletion
        assert record.completed_units == {2}
        assert record.current_position == 1
        assert check_integrity(catalog, progress).ok


class TestCatchUp:
    def test_nothing_newer(self, catalog, progress, five_levels, three_students):
        assert catch_up(catalog, progress, three_students, 0) == 0

    def test_skips_records_already_repaired(
        self, engine, catalog, progress, five_levels, three_students
    ):
        engine.delete_unit(five_levels[0].unit_id)
        snapshot = [r.to_dict() for r in progress.list_all()]

        assert catch_up(catalog, progress, three_students, 0) == 0
        assert [r.to_dict() for r in progress.list_all()] == snapshot


class TestLoadProgress:
    """Bulk import of records given in the current numbering."""

    def test_import_during_pending_repair_not_shifted_twice(
        self, engine, catalog, progress
    ):
        levels = [catalog.add(seq, f"Level {seq}") for seq in range(1, 5)]
        tombstone = catalog.delete(levels[0].unit_id)

        count = load_progress(
            catalog,
            progress,
            [ProgressRecord(owner_id="s", completed_units={1, 2, 3}, current_position=4)],
        )
        results = engine.repair_pending()

        assert count == 1
        assert results[0].affected_count == 0
        record = progress.get("s")
        assert record.completed_units == {1, 2, 3}
        assert record.current_position == 4
        assert record.last_repair_id == tombstone.tombstone_id

    def test_reimport_keeps_repaired_marker(self, engine, catalog, progress, five_levels):
        load_progress(
            catalog,
            progress,
            [ProgressRecord(owner_id="s", completed_units={1, 2}, current_position=3)],
        )
        engine.delete_unit(five_levels[4].unit_id)

        load_progress(
            catalog,
            progress,
            [ProgressRecord(owner_id="s", completed_units={1, 2, 3}, current_position=4)],
        )

        assert progress.get("s").last_repair_id == catalog.latest_tombstone_id()
        assert check_integrity(catalog, progress).ok
