"""
Formatted (read-side) view of a user's progress.

Flattens one game mode of a progress document into item lists and marks
tasks that can no longer be done as invalid: tasks of the other faction,
tasks gated on a failure that did not happen, and tasks whose alternative
was completed. Invalidation spreads to dependents that need the invalid
task completed.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import GameMode, TaskCatalog, TaskState

logger = logging.getLogger(__name__)

DEFAULT_FACTION = "USEC"
ANY_FACTION = "Any"


@dataclass
class ProgressItem:
    """One task or objective in the formatted view."""

    id: str
    complete: bool = False
    failed: bool = False
    invalid: bool = False
    count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "complete": self.complete}
        if self.failed:
            data["failed"] = True
        if self.invalid:
            data["invalid"] = True
        if self.count is not None:
            data["count"] = self.count
        return data


@dataclass
class FormattedProgress:
    """Progress of one user in one game mode."""

    user_id: str
    display_name: str
    player_level: int = 1
    game_edition: int = 1
    pmc_faction: str = DEFAULT_FACTION
    tasks_progress: list[ProgressItem] = field(default_factory=list)
    objectives_progress: list[ProgressItem] = field(default_factory=list)

    def task(self, task_id: str) -> ProgressItem | None:
        return next((item for item in self.tasks_progress if item.id == task_id), None)

    def objective(self, objective_id: str) -> ProgressItem | None:
        return next((item for item in self.objectives_progress if item.id == objective_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "playerLevel": self.player_level,
            "gameEdition": self.game_edition,
            "pmcFaction": self.pmc_faction,
            "tasksProgress": [item.to_dict() for item in self.tasks_progress],
            "taskObjectivesProgress": [item.to_dict() for item in self.objectives_progress],
        }


def extract_game_mode_data(
    document: Mapping[str, Any] | None, game_mode: GameMode = GameMode.PVP
) -> Mapping[str, Any] | None:
    """Pick one game mode out of a progress document.

    Handles three layouts: per-mode maps (``{"pvp": ..., "pve": ...}``),
    partially migrated documents (``currentGameMode`` set but no mode maps)
    and legacy flat documents.
    """
    if not document:
        return None

    mode = GameMode(game_mode).value
    if GameMode.PVP.value in document or GameMode.PVE.value in document:
        return document.get(mode)

    if document.get("currentGameMode"):
        return {k: v for k, v in document.items() if k != "currentGameMode"}

    return document


def _edition(mode_data: Mapping[str, Any], document: Mapping[str, Any]) -> int:
    for candidate in (mode_data.get("gameEdition"), document.get("gameEdition")):
        if isinstance(candidate, bool):
            continue
        if isinstance(candidate, (int, float)):
            return int(candidate)
        if isinstance(candidate, str):
            try:
                return int(float(candidate))
            except ValueError:
                continue
    return 1


def _format_items(raw_items: Mapping[str, Any] | None, show_count: bool) -> list[ProgressItem]:
    items = []
    for item_id, raw in (raw_items or {}).items():
        raw = raw or {}
        item = ProgressItem(
            id=item_id,
            complete=raw.get("complete") is True,
            failed=bool(raw.get("failed", False)),
            invalid=raw.get("invalid") is True,
        )
        if show_count and isinstance(raw.get("count"), int):
            item.count = raw["count"]
        if item.invalid:
            item.complete = False
        items.append(item)
    return items


def invalidate_task(
    task_id: str,
    catalog: TaskCatalog,
    progress: FormattedProgress,
    children_only: bool = False,
) -> None:
    """Mark a task, its objectives and its dependents invalid.

    Walks the dependent graph with an explicit stack and a visited set.

    Args:
        task_id: Task to invalidate.
        catalog: Task catalog.
        progress: Formatted progress to mutate.
        children_only: Only invalidate the dependents, not the task itself.
    """
    tasks = {item.id: item for item in progress.tasks_progress}
    objectives = {item.id: item for item in progress.objectives_progress}
    visited: set[str] = set()
    stack: list[tuple[str, bool]] = [(task_id, children_only)]

    while stack:
        current_id, skip_self = stack.pop()
        task = catalog.get(current_id)
        if task is None:
            continue

        if not skip_self:
            if current_id in visited:
                continue
            visited.add(current_id)

            item = tasks.get(current_id)
            if item is None:
                item = ProgressItem(id=current_id)
                tasks[current_id] = item
                progress.tasks_progress.append(item)
            item.invalid = True
            item.complete = False

            for objective in task.objectives:
                obj_item = objectives.get(objective.id)
                if obj_item is None:
                    obj_item = ProgressItem(id=objective.id, count=0)
                    objectives[objective.id] = obj_item
                    progress.objectives_progress.append(obj_item)
                obj_item.invalid = True
                obj_item.complete = False

        for dependent in catalog.dependents_of(current_id):
            if dependent.id in visited:
                continue
            needs_completion = any(
                req.required_task_id == current_id and req.needs_completion
                for req in dependent.task_requirements
            )
            if needs_completion:
                stack.append((dependent.id, False))


def invalidate_tasks(progress: FormattedProgress, catalog: TaskCatalog) -> None:
    """Apply faction, failed-requirement and alternative invalidation rules."""
    # Other faction's tasks
    for task in catalog.tasks:
        if task.faction_name and task.faction_name not in (ANY_FACTION, progress.pmc_faction):
            invalidate_task(task.id, catalog, progress)

    # Tasks that need a failure, where the required task was completed instead
    for task in catalog.tasks:
        for req in task.task_requirements:
            if req.accepts_active or req.acceptable_statuses != {TaskState.FAILED}:
                continue
            required = progress.task(req.required_task_id)
            if required is not None and required.complete and not required.failed:
                invalidate_task(task.id, catalog, progress)
                break

    # Tasks whose alternative has been completed
    for task in catalog.tasks:
        for alt_id in task.alternatives:
            alt = progress.task(alt_id)
            if alt is not None and alt.complete and not alt.failed:
                invalidate_task(task.id, catalog, progress)
                break


def format_progress(
    document: Mapping[str, Any] | None,
    user_id: str,
    catalog: TaskCatalog | None,
    game_mode: GameMode = GameMode.PVP,
) -> FormattedProgress:
    """Build the formatted view of one game mode of a progress document.

    A missing document yields defaults (display name is the first six
    characters of the user id).
    """
    document = document or {}
    mode_data = extract_game_mode_data(document, game_mode) or {}

    progress = FormattedProgress(
        user_id=user_id,
        display_name=mode_data.get("displayName") or user_id[:6],
        player_level=mode_data.get("level") or 1,
        game_edition=_edition(mode_data, document),
        pmc_faction=mode_data.get("pmcFaction") or DEFAULT_FACTION,
        tasks_progress=_format_items(mode_data.get("taskCompletions"), show_count=False),
        objectives_progress=_format_items(mode_data.get("taskObjectives"), show_count=True),
    )

    if catalog is not None and not catalog.is_empty:
        invalidate_tasks(progress, catalog)

    return progress
