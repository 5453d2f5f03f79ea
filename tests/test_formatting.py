"""Tests for the formatted progress view and task invalidation."""

from questlog.progress.catalog import parse_catalog
from questlog.progress.formatting import (
    extract_game_mode_data,
    format_progress,
    invalidate_task,
)
from questlog.progress.models import GameMode


class TestExtractGameModeData:
    """Test game mode selection across document layouts."""

    def test_per_mode_document(self, document):
        """Per-mode documents return the requested mode map."""
        assert extract_game_mode_data(document, GameMode.PVE)["pmcFaction"] == "BEAR"

    def test_missing_mode_map(self):
        """A per-mode document without the requested mode gives None."""
        assert extract_game_mode_data({"pvp": {"level": 1}}, GameMode.PVE) is None

    def test_migrated_without_mode_maps(self):
        """A migrated document without mode maps drops the marker key."""
        data = extract_game_mode_data({"currentGameMode": "pvp", "level": 4})
        assert data == {"level": 4}

    def test_legacy_flat_document(self):
        """Legacy flat documents are read as they are."""
        assert extract_game_mode_data({"level": 9}) == {"level": 9}

    def test_empty(self):
        """No document means no data."""
        assert extract_game_mode_data(None) is None


class TestFormatProgress:
    """Test the flattened view."""

    def test_missing_document_defaults(self, catalog):
        """A missing document falls back to defaults and a short user id."""
        progress = format_progress(None, "abcdefgh", catalog)
        assert progress.display_name == "abcdef"
        assert progress.player_level == 1
        assert progress.pmc_faction == "USEC"

    def test_fields_from_mode(self, document, catalog):
        """Scalar fields and records come from the selected mode."""
        document["pvp"]["taskCompletions"]["C"] = {"complete": True, "failed": False}
        document["pvp"]["taskObjectives"]["o1"] = {"complete": False, "count": 2}
        progress = format_progress(document, "u1", catalog, GameMode.PVP)

        assert progress.display_name == "Tester"
        assert progress.player_level == 15
        assert progress.game_edition == 2
        assert progress.task("C").complete
        assert progress.objective("o1").count == 2

    def test_to_dict(self, document, catalog):
        """The view serializes with camelCase keys."""
        data = format_progress(document, "u1", catalog).to_dict()
        assert data["userId"] == "u1"
        assert "tasksProgress" in data
        assert "taskObjectivesProgress" in data


class TestInvalidation:
    """Test invalidation rules."""

    def test_other_faction_invalid(self, document, catalog):
        """Tasks for the other faction are invalid."""
        progress = format_progress(document, "u1", catalog, GameMode.PVP)
        assert progress.task("G").invalid

    def test_own_faction_not_invalid(self, document, catalog):
        """Tasks for the player's own faction stay valid."""
        progress = format_progress(document, "u1", catalog, GameMode.PVE)
        assert progress.task("G") is None

    def test_completed_alternative_invalidates(self, document, catalog):
        """A completed task invalidates its alternatives."""
        document["pvp"]["taskCompletions"]["A"] = {"complete": True, "failed": False}
        progress = format_progress(document, "u1", catalog)
        assert progress.task("B").invalid
        assert not progress.task("A").invalid

    def test_failed_requirement_not_met(self, document, catalog):
        """E needs A failed; A completed means E can never be done."""
        document["pvp"]["taskCompletions"]["A"] = {"complete": True, "failed": False}
        progress = format_progress(document, "u1", catalog)
        assert progress.task("E").invalid
        assert progress.task("D") is None

    def test_invalidation_spreads_to_dependents(self, document, catalog):
        """Invalidating A also invalidates D, whose objective is marked too."""
        progress = format_progress(document, "u1", catalog)
        invalidate_task("A", catalog, progress)
        assert progress.task("D").invalid
        assert progress.objective("D-obj").invalid
        # E only accepts a failure, which an invalid A cannot produce either way
        assert progress.task("E") is None

    def test_children_only(self, document, catalog):
        """children_only leaves the task itself untouched."""
        progress = format_progress(document, "u1", catalog)
        invalidate_task("A", catalog, progress, children_only=True)
        assert progress.task("A") is None
        assert progress.task("D").invalid

    def test_cycle_terminates(self, document):
        """Invalidation through a requirement cycle stops."""
        cyclic = parse_catalog([
            {"id": "X", "taskRequirements": [{"task": {"id": "Y"}, "status": ["complete"]}]},
            {"id": "Y", "taskRequirements": [{"task": {"id": "X"}, "status": ["complete"]}]},
        ])
        progress = format_progress(document, "u1", cyclic)
        invalidate_task("X", cyclic, progress)
        assert progress.task("X").invalid
        assert progress.task("Y").invalid

    def test_active_requirement_propagates(self, document):
        """A dependent that needs its parent active is invalidated with it."""
        active = parse_catalog([
            {"id": "X"},
            {"id": "Y", "taskRequirements": [{"task": {"id": "X"}, "status": ["active"]}]},
        ])
        progress = format_progress(document, "u1", active)
        invalidate_task("X", active, progress)
        assert progress.task("Y").invalid

    def test_active_requirement_not_failed_only(self, document):
        """Completing the parent never invalidates an active requirement."""
        active = parse_catalog([
            {"id": "X"},
            {"id": "Y", "taskRequirements": [{"task": {"id": "X"}, "status": ["active"]}]},
        ])
        document["pvp"]["taskCompletions"]["X"] = {"complete": True, "failed": False}
        progress = format_progress(document, "u1", active)
        assert progress.task("Y") is None
