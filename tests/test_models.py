"""Tests for catalog and progress record models."""

import logging

import pytest
from pydantic import ValidationError

from questlog.progress.models import (
    ObjectiveUpdate,
    Task,
    TaskCatalog,
    TaskCompletionRecord,
    TaskRequirement,
    TaskState,
    TaskUpdate,
    status_of,
)


class TestTaskRequirement:
    """Test requirement parsing from catalog data."""

    def test_catalog_shape(self):
        """{task: {id}, status: [...]} is accepted."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["complete"]})
        assert req.required_task_id == "A"
        assert req.acceptable_statuses == {TaskState.COMPLETED}
        assert not req.accepts_active

    def test_aliased_shape(self):
        """camelCase keys with full state names are accepted."""
        req = TaskRequirement.model_validate(
            {"requiredTaskId": "A", "acceptableStatuses": ["completed", "failed"]}
        )
        assert req.acceptable_statuses == {TaskState.COMPLETED, TaskState.FAILED}

    def test_active_status_accepted(self):
        """'active' is a recognized catalog status, alone or with others."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["active", "complete"]})
        assert req.accepts_active
        assert req.acceptable_statuses == {TaskState.COMPLETED}

        only_active = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["active"]})
        assert only_active.accepts_active
        assert only_active.acceptable_statuses == frozenset()
        assert only_active.needs_completion

    def test_unknown_status_dropped_with_warning(self, caplog):
        """Unrecognized statuses are ignored; the known ones remain."""
        with caplog.at_level(logging.WARNING, logger="questlog.progress.models"):
            req = TaskRequirement.model_validate(
                {"task": {"id": "A"}, "status": ["complete", "locked"]}
            )
        assert req.acceptable_statuses == {TaskState.COMPLETED}
        assert "locked" in caplog.text

    def test_only_unknown_statuses_rejected(self):
        """A requirement with no known status at all is invalid on its own."""
        with pytest.raises(ValidationError):
            TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["locked"]})

    def test_empty_statuses_rejected(self):
        """An empty status list cannot be satisfied."""
        with pytest.raises(ValidationError):
            TaskRequirement.model_validate({"task": {"id": "A"}, "status": []})


class TestSatisfiedBy:
    """Test which required-task states meet a requirement."""

    def test_listed_states(self):
        """Only the listed states satisfy a plain requirement."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["failed"]})
        assert req.satisfied_by(TaskState.FAILED)
        assert not req.satisfied_by(TaskState.COMPLETED)
        assert not req.satisfied_by(TaskState.UNCOMPLETED)

    def test_active_met_by_completed(self):
        """A completed required task is active."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["active"]})
        assert req.satisfied_by(TaskState.COMPLETED, recorded=True)

    def test_active_met_by_recorded_uncompleted(self):
        """An uncompleted task with a record counts as active."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["active"]})
        assert req.satisfied_by(TaskState.UNCOMPLETED, recorded=True)
        assert not req.satisfied_by(TaskState.UNCOMPLETED, recorded=False)

    def test_active_not_met_by_failed(self):
        """A failed required task is not active."""
        req = TaskRequirement.model_validate({"task": {"id": "A"}, "status": ["active"]})
        assert not req.satisfied_by(TaskState.FAILED)


class TestTask:
    """Test task normalization."""

    def test_alternatives_deduplicated_in_order(self):
        """Repeated alternatives keep their first position."""
        task = Task.model_validate({"id": "A", "alternatives": ["B", "C", "B"]})
        assert task.alternatives == ("B", "C")

    def test_null_collections_become_empty(self):
        """Null collections from the catalog read as empty tuples."""
        task = Task.model_validate(
            {"id": "A", "alternatives": None, "taskRequirements": None, "objectives": None}
        )
        assert task.alternatives == ()
        assert task.task_requirements == ()
        assert task.objectives == ()

    def test_requirement_without_task_id_dropped(self):
        """A requirement pointing at a missing task carries no constraint."""
        task = Task.model_validate({
            "id": "D",
            "taskRequirements": [
                {"task": None, "status": ["complete"]},
                {"task": {"id": "A"}, "status": ["complete"]},
            ],
        })
        assert [req.required_task_id for req in task.task_requirements] == ["A"]
        assert task.requires("A")
        assert not task.requires("B")

    def test_requirement_with_only_unknown_statuses_dropped(self):
        """The task still loads when one requirement has no usable status."""
        task = Task.model_validate({
            "id": "D",
            "taskRequirements": [
                {"task": {"id": "A"}, "status": ["locked"]},
                {"task": {"id": "B"}, "status": ["active"]},
            ],
        })
        assert [req.required_task_id for req in task.task_requirements] == ["B"]
        assert not task.requires("A")

    def test_empty_id_rejected(self):
        """A task needs a non-empty id."""
        with pytest.raises(ValidationError):
            Task.model_validate({"id": ""})


class TestTaskCatalog:
    """Test catalog indexing."""

    def test_lookup(self, catalog):
        """Tasks are found by id; unknown ids give None."""
        assert catalog.get("A").name == "Alpha"
        assert catalog.get("missing") is None

    def test_dependents_in_catalog_order(self, catalog):
        """Reverse requirement index follows catalog order."""
        assert [task.id for task in catalog.dependents_of("A")] == ["D", "E", "F"]
        assert [task.id for task in catalog.dependents_of("C")] == ["F"]
        assert catalog.dependents_of("G") == []

    def test_duplicate_ids_keep_first(self):
        """The first task with a repeated id wins."""
        catalog = TaskCatalog(tasks=[
            {"id": "A", "name": "first"},
            {"id": "A", "name": "second"},
        ])
        assert catalog.get("A").name == "first"

    def test_empty(self):
        """A catalog without tasks reports itself empty."""
        assert TaskCatalog().is_empty


class TestStatusOf:
    """Test effective status derivation from stored records."""

    def test_missing_record(self):
        """No record means uncompleted."""
        assert status_of(None) is TaskState.UNCOMPLETED
        assert status_of({}) is TaskState.UNCOMPLETED

    def test_completed(self):
        """complete without failed is completed."""
        assert status_of({"complete": True, "failed": False}) is TaskState.COMPLETED

    def test_failed(self):
        """complete and failed is failed."""
        assert status_of({"complete": True, "failed": True}) is TaskState.FAILED

    def test_failed_without_complete_is_uncompleted(self):
        """A failed flag without complete does not count."""
        assert status_of({"complete": False, "failed": True}) is TaskState.UNCOMPLETED


class TestTaskCompletionRecord:
    """Test the stored task record."""

    def test_failed_requires_complete(self):
        """A failed record must also be complete."""
        with pytest.raises(ValueError):
            TaskCompletionRecord(complete=False, failed=True)

    def test_from_dict(self):
        """Stored maps become records with a derived status."""
        record = TaskCompletionRecord.from_dict({"complete": True, "failed": True, "timestamp": 5})
        assert record.status is TaskState.FAILED
        assert record.timestamp == 5

    def test_to_dict_omits_missing_timestamp(self):
        """No timestamp key is written when none is set."""
        assert TaskCompletionRecord().to_dict() == {"complete": False, "failed": False}


class TestRequests:
    """Test request models."""

    def test_task_update_rejects_unknown_state(self):
        """Task updates only take the three task states."""
        with pytest.raises(ValidationError):
            TaskUpdate.model_validate({"id": "A", "state": "done"})

    def test_objective_update_needs_a_change(self):
        """An objective update with neither state nor count is rejected."""
        with pytest.raises(ValidationError):
            ObjectiveUpdate.model_validate({})

    def test_objective_cannot_fail(self):
        """Objectives are completed or uncompleted, never failed."""
        with pytest.raises(ValidationError):
            ObjectiveUpdate.model_validate({"state": "failed"})

    def test_objective_count_only(self):
        """A count on its own is a valid objective update."""
        update = ObjectiveUpdate.model_validate({"count": 4})
        assert update.state is None
        assert update.count == 4

    def test_negative_count_rejected(self):
        """Counts cannot go below zero."""
        with pytest.raises(ValidationError):
            ObjectiveUpdate.model_validate({"count": -1})
