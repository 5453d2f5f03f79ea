"""
Field-path mutations against a progress document.

A mutation set is a flat dict of dot-separated paths to values, e.g.
``{"pvp.taskCompletions.abc.complete": True}``. Paths address nested map
entries so a write never replaces sibling fields. ``DELETE_FIELD`` as a
value removes the addressed field.
"""

import time
from collections.abc import Mapping
from typing import Any

from .models import GameMode, ObjectiveUpdate, TaskState

FieldUpdates = dict[str, Any]


class _DeleteField:
    """Sentinel marking a field for removal."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def field_path(*parts: str) -> str:
    """Join path segments with dots."""
    return ".".join(parts)


def split_path(path: str) -> list[str]:
    """Split a dotted field path into its segments."""
    parts = path.split(".")
    if any(not part for part in parts):
        raise ValueError(f"Invalid field path: {path!r}")
    return parts


def task_completion_path(game_mode: GameMode, task_id: str) -> str:
    return field_path(GameMode(game_mode).value, "taskCompletions", task_id)


def objective_path(game_mode: GameMode, objective_id: str) -> str:
    return field_path(GameMode(game_mode).value, "taskObjectives", objective_id)


def task_completion_fields(
    game_mode: GameMode,
    task_id: str,
    state: TaskState,
    timestamp: int,
    updates: FieldUpdates | None = None,
) -> FieldUpdates:
    """Add the primary-path fields for one task state change.

    Args:
        game_mode: Namespace to write under.
        task_id: Task being changed.
        state: New state.
        timestamp: Update time in epoch milliseconds.
        updates: Accumulator to add into (a new dict when None).

    Returns:
        The accumulator.
    """
    if updates is None:
        updates = {}
    base = task_completion_path(game_mode, task_id)
    state = TaskState(state)

    if state is TaskState.COMPLETED:
        updates[f"{base}.complete"] = True
        updates[f"{base}.failed"] = False
        updates[f"{base}.timestamp"] = timestamp
    elif state is TaskState.FAILED:
        updates[f"{base}.complete"] = True
        updates[f"{base}.failed"] = True
        updates[f"{base}.timestamp"] = timestamp
    else:
        updates[f"{base}.complete"] = False
        updates[f"{base}.failed"] = False
        updates[f"{base}.timestamp"] = DELETE_FIELD
    return updates


def objective_fields(
    game_mode: GameMode,
    objective_id: str,
    update: ObjectiveUpdate,
    timestamp: int,
) -> FieldUpdates:
    """Fields for an objective state and/or count change."""
    base = objective_path(game_mode, objective_id)
    updates: FieldUpdates = {}

    if update.state is TaskState.COMPLETED:
        updates[f"{base}.complete"] = True
        updates[f"{base}.timestamp"] = timestamp
    elif update.state is TaskState.UNCOMPLETED:
        updates[f"{base}.complete"] = False
        updates[f"{base}.timestamp"] = DELETE_FIELD

    if update.count is not None:
        updates[f"{base}.count"] = update.count
    return updates


def group_by_record(updates: Mapping[str, Any], depth: int = 3) -> dict[str, FieldUpdates]:
    """Group field updates by their record prefix (mode.collection.id)."""
    groups: dict[str, FieldUpdates] = {}
    for path, value in updates.items():
        prefix = field_path(*split_path(path)[:depth])
        groups.setdefault(prefix, {})[path] = value
    return groups


def flatten_fields(data: Mapping[str, Any], prefix: str = "") -> FieldUpdates:
    """Turn a nested dict into leaf field paths (empty maps are kept as leaves)."""
    fields: FieldUpdates = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            fields.update(flatten_fields(value, path))
        else:
            fields[path] = value
    return fields


def apply_field_updates(document: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Apply field-path updates to a nested dict in place.

    Missing intermediate maps are created; a non-map intermediate value is
    replaced by a map. Deleting a missing field is a no-op.

    Returns:
        The same document, for chaining.
    """
    for path, value in updates.items():
        *parents, leaf = split_path(path)
        node = document
        if value is DELETE_FIELD:
            for part in parents:
                child = node.get(part) if isinstance(node, dict) else None
                if not isinstance(child, dict):
                    node = None
                    break
                node = child
            if node is not None:
                node.pop(leaf, None)
            continue

        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = value
    return document
