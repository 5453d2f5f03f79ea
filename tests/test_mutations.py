"""Tests for field-path mutations."""

import pytest

from questlog.progress.models import GameMode, ObjectiveUpdate, TaskState
from questlog.progress.mutations import (
    DELETE_FIELD,
    apply_field_updates,
    flatten_fields,
    group_by_record,
    objective_fields,
    split_path,
    task_completion_fields,
)


class TestTaskCompletionFields:
    """Test the primary-path fields per state."""

    def test_completed(self):
        """completed writes complete, not failed, and a timestamp."""
        fields = task_completion_fields(GameMode.PVP, "A", TaskState.COMPLETED, 10)
        assert fields == {
            "pvp.taskCompletions.A.complete": True,
            "pvp.taskCompletions.A.failed": False,
            "pvp.taskCompletions.A.timestamp": 10,
        }

    def test_failed(self):
        """failed writes complete and failed."""
        fields = task_completion_fields(GameMode.PVE, "A", TaskState.FAILED, 10)
        assert fields["pve.taskCompletions.A.complete"] is True
        assert fields["pve.taskCompletions.A.failed"] is True

    def test_uncompleted_deletes_timestamp(self):
        """uncompleted clears both flags and removes the timestamp."""
        fields = task_completion_fields(GameMode.PVP, "A", TaskState.UNCOMPLETED, 10)
        assert fields["pvp.taskCompletions.A.complete"] is False
        assert fields["pvp.taskCompletions.A.failed"] is False
        assert fields["pvp.taskCompletions.A.timestamp"] is DELETE_FIELD

    def test_accumulates_into_existing_dict(self):
        """Fields for several tasks collect into one dict."""
        updates = {}
        task_completion_fields(GameMode.PVP, "A", TaskState.COMPLETED, 1, updates)
        task_completion_fields(GameMode.PVP, "B", TaskState.FAILED, 1, updates)
        assert len(updates) == 6


class TestObjectiveFields:
    """Test objective field generation."""

    def test_complete_with_count(self):
        """Completing with a count writes all three fields."""
        fields = objective_fields(
            GameMode.PVP, "o1", ObjectiveUpdate(state=TaskState.COMPLETED, count=3), 7
        )
        assert fields == {
            "pvp.taskObjectives.o1.complete": True,
            "pvp.taskObjectives.o1.timestamp": 7,
            "pvp.taskObjectives.o1.count": 3,
        }

    def test_uncomplete(self):
        """Uncompleting removes the timestamp."""
        fields = objective_fields(
            GameMode.PVP, "o1", ObjectiveUpdate(state=TaskState.UNCOMPLETED), 7
        )
        assert fields["pvp.taskObjectives.o1.timestamp"] is DELETE_FIELD

    def test_count_only_leaves_completion_alone(self):
        """A count-only update writes just the count."""
        fields = objective_fields(GameMode.PVP, "o1", ObjectiveUpdate(count=0), 7)
        assert fields == {"pvp.taskObjectives.o1.count": 0}


class TestApplyFieldUpdates:
    """Test in-place application to nested dicts."""

    def test_creates_parents_and_keeps_siblings(self):
        """Missing parents are created and siblings kept."""
        doc = {"pvp": {"level": 5, "taskCompletions": {"X": {"complete": True}}}}
        apply_field_updates(doc, {"pvp.taskCompletions.A.complete": True})
        assert doc["pvp"]["level"] == 5
        assert doc["pvp"]["taskCompletions"]["X"] == {"complete": True}
        assert doc["pvp"]["taskCompletions"]["A"] == {"complete": True}

    def test_delete(self):
        """DELETE_FIELD removes the key."""
        doc = {"pvp": {"taskCompletions": {"A": {"complete": True, "timestamp": 1}}}}
        apply_field_updates(doc, {"pvp.taskCompletions.A.timestamp": DELETE_FIELD})
        assert doc["pvp"]["taskCompletions"]["A"] == {"complete": True}

    def test_delete_missing_is_noop(self):
        """Deleting a missing path changes nothing."""
        doc = {"pvp": {}}
        apply_field_updates(doc, {"pvp.taskCompletions.A.timestamp": DELETE_FIELD})
        assert doc == {"pvp": {}}

    def test_empty_segment_rejected(self):
        """Paths with empty segments are rejected."""
        with pytest.raises(ValueError):
            apply_field_updates({}, {"pvp..A": 1})


class TestPathHelpers:
    """Test path splitting and grouping."""

    def test_split_path(self):
        """Paths split on dots."""
        assert split_path("pvp.taskCompletions.A") == ["pvp", "taskCompletions", "A"]

    def test_group_by_record(self):
        """Updates group by their record path in order."""
        updates = {
            "pvp.taskCompletions.B.complete": True,
            "pvp.taskCompletions.B.failed": True,
            "pvp.taskCompletions.C.complete": True,
        }
        groups = group_by_record(updates)
        assert list(groups) == ["pvp.taskCompletions.B", "pvp.taskCompletions.C"]
        assert len(groups["pvp.taskCompletions.B"]) == 2

    def test_flatten_fields(self):
        """Nested maps flatten to two-level paths."""
        fields = flatten_fields({"pvp": {"level": 1, "taskCompletions": {}}, "gameEdition": 2})
        assert fields == {"pvp.level": 1, "pvp.taskCompletions": {}, "gameEdition": 2}

    def test_delete_sentinel_is_singleton(self):
        """DELETE_FIELD has a single instance."""
        assert type(DELETE_FIELD)() is DELETE_FIELD
