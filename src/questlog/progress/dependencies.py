"""
Dependency engine: alternative-task cascade and prerequisite evaluation.

Runs after a task's own state change has been committed. It takes exactly
one hop from the changed task: alternatives of the changed task are
written, dependents of the changed task are evaluated, and nothing that
changes here triggers a further cascade. Cyclic ``alternatives`` or
``taskRequirements`` data therefore always terminates.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from ..core.tracing import span
from .models import GameMode, Task, TaskCatalog, TaskState, status_of
from .mutations import FieldUpdates, group_by_record, now_ms, task_completion_path
from .store import ProgressStore

logger = logging.getLogger(__name__)


@dataclass
class DependencyOutcome:
    """What the secondary phase did for one changed task.

    Never raised; failures are recorded here and logged.
    """

    task_id: str
    state: TaskState
    skipped: bool = False
    alternatives_updated: list[str] = field(default_factory=list)
    failed_alternatives: dict[str, str] = field(default_factory=dict)
    verdicts: dict[str, bool] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_alternatives

    @property
    def unlocked(self) -> list[str]:
        """Dependents whose requirements are all met."""
        return [task_id for task_id, met in self.verdicts.items() if met]


class ProgressSnapshot:
    """Lazily read, cached task completions of one user in one game mode."""

    def __init__(self, store: ProgressStore, user_id: str, game_mode: GameMode = GameMode.PVP):
        self.store = store
        self.user_id = user_id
        self.game_mode = GameMode(game_mode)
        self._completions: Mapping[str, Any] | None = None

    async def completions(self) -> Mapping[str, Any]:
        """Task completion maps keyed by task id (empty if no document)."""
        if self._completions is None:
            document = await self.store.get(self.user_id) or {}
            mode_data = document.get(self.game_mode.value) or {}
            self._completions = mode_data.get("taskCompletions") or {}
        return self._completions


def update_alternative_tasks(
    changed_task: Task,
    new_state: TaskState,
    updates: FieldUpdates,
    timestamp: int,
    game_mode: GameMode = GameMode.PVP,
) -> list[str]:
    """Compute the mutual-exclusion cascade onto a task's alternatives.

    Completing a task fails every alternative; un-completing it reopens them.
    Failing a task leaves its alternatives alone.

    Args:
        changed_task: Task whose state changed.
        new_state: Its new state.
        updates: Field-path accumulator the mutations are added to.
        timestamp: Update time written to each alternative.
        game_mode: Namespace to write under.

    Returns:
        Ids of the alternatives that received mutations.
    """
    new_state = TaskState(new_state)
    if new_state is TaskState.FAILED or not changed_task.alternatives:
        return []

    closed = new_state is TaskState.COMPLETED
    affected = []
    for alt_id in changed_task.alternatives:
        # A self-reference would overwrite the record that was just committed
        if alt_id == changed_task.id:
            continue
        base = task_completion_path(game_mode, alt_id)
        updates[f"{base}.complete"] = closed
        updates[f"{base}.failed"] = closed
        updates[f"{base}.timestamp"] = timestamp
        affected.append(alt_id)
    return affected


def requirements_met(
    task: Task,
    completions: Mapping[str, Any],
    changed_task_id: str | None = None,
    new_state: TaskState | None = None,
) -> bool:
    """Whether every requirement of task is satisfied.

    The status of ``changed_task_id`` is taken from ``new_state`` rather than
    from ``completions``; every other required task uses its stored record.
    An ``active`` requirement is met by a completed task or by an uncompleted
    one that has a record.
    A task without requirements is always satisfied.
    """
    for req in task.task_requirements:
        if new_state is not None and req.required_task_id == changed_task_id:
            met = req.satisfied_by(TaskState(new_state))
        else:
            raw = completions.get(req.required_task_id)
            met = req.satisfied_by(status_of(raw), recorded=raw is not None)
        if not met:
            return False
    return True


async def check_all_requirements_met(
    dependent_task: Task,
    changed_task_id: str,
    new_state: TaskState,
    user_id: str,
    snapshot: ProgressSnapshot,
) -> bool:
    """Read-only prerequisite check for a dependent task.

    Fails open: if the user's progress cannot be read the dependency is
    reported as met, so an unreadable store never blocks visible progress.
    """
    try:
        completions = await snapshot.completions()
    except Exception as e:
        logger.warning(
            f"Could not read progress for {user_id} while checking {dependent_task.id}, "
            f"treating requirements as met: {e}"
        )
        return True

    met = requirements_met(dependent_task, completions, changed_task_id, new_state)
    if met:
        logger.debug(
            f"All requirements met for {dependent_task.id} "
            f"(user={user_id}, changed={changed_task_id})"
        )
    return met


async def update_task_state(
    changed_task_id: str,
    new_state: TaskState,
    user_id: str,
    catalog: TaskCatalog | None,
    store: ProgressStore,
    game_mode: GameMode = GameMode.PVP,
    clock: Callable[[], int] = now_ms,
) -> DependencyOutcome:
    """Apply the alternative cascade and evaluate dependents of one task.

    An absent or empty catalog, or a task id the catalog does not know, is a
    no-op: nothing is read or written.

    Args:
        changed_task_id: Task whose state was just committed.
        new_state: The committed state.
        user_id: Owner of the progress document.
        catalog: Task catalog snapshot.
        store: Progress store to write alternatives to.
        game_mode: Namespace of the change.
        clock: Millisecond clock for alternative timestamps.

    Returns:
        DependencyOutcome describing writes and verdicts.
    """
    new_state = TaskState(new_state)
    game_mode = GameMode(game_mode)
    outcome = DependencyOutcome(task_id=changed_task_id, state=new_state)

    if catalog is None or catalog.is_empty:
        outcome.skipped = True
        return outcome

    changed_task = catalog.get(changed_task_id)
    if changed_task is None:
        logger.debug(f"Task {changed_task_id} not in catalog, skipping dependency update")
        outcome.skipped = True
        return outcome

    with span(
        "progress.dependencies",
        user_id=user_id,
        task_id=changed_task_id,
        state=new_state.value,
    ) as dep_span:
        updates: FieldUpdates = {}
        update_alternative_tasks(changed_task, new_state, updates, clock(), game_mode)

        # One write per alternative; a failed write does not stop the rest
        for record_path, fields in group_by_record(updates).items():
            alt_id = record_path.rsplit(".", 1)[-1]
            try:
                await store.update(user_id, fields)
                outcome.alternatives_updated.append(alt_id)
            except Exception as e:
                logger.error(
                    f"Error updating alternative task {alt_id} "
                    f"(user={user_id}, changed={changed_task_id}, state={new_state.value}): {e}"
                )
                outcome.failed_alternatives[alt_id] = str(e)

        if outcome.alternatives_updated:
            logger.info(
                f"Updated {len(outcome.alternatives_updated)} alternative task(s) of "
                f"{changed_task_id} for {user_id}: {', '.join(outcome.alternatives_updated)}"
            )

        snapshot = ProgressSnapshot(store, user_id, game_mode)
        for dependent in catalog.dependents_of(changed_task_id):
            outcome.verdicts[dependent.id] = await check_all_requirements_met(
                dependent, changed_task_id, new_state, user_id, snapshot
            )

        dep_span.set_attributes(
            alternatives_updated=len(outcome.alternatives_updated),
            alternatives_failed=len(outcome.failed_alternatives),
            dependents_checked=len(outcome.verdicts),
        )

    return outcome
