"""
Task catalog and progress record models.

Catalog entries are pydantic models (validated at load time, immutable once
loaded). Per-user progress records are plain dataclasses built from the raw
document maps.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    """Status a task can be set to."""

    COMPLETED = "completed"
    FAILED = "failed"
    UNCOMPLETED = "uncompleted"


class GameMode(str, Enum):
    """Top-level namespace of a progress document."""

    PVP = "pvp"
    PVE = "pve"


# Catalog spellings of requirement statuses
STATUS_ALIASES: dict[str, str] = {
    "complete": TaskState.COMPLETED.value,
    "completed": TaskState.COMPLETED.value,
    "failed": TaskState.FAILED.value,
}

# Required task has been unlocked (has a record) or completed
ACTIVE_STATUS = "active"


def _none_to_empty(value: Any) -> Any:
    return () if value is None else value


def split_requirement_statuses(raw: Any) -> tuple[list[str], bool, list[str]]:
    """Split catalog requirement statuses.

    Returns:
        Tuple of (task state values, whether ``active`` is accepted,
        unrecognized statuses).
    """
    if raw is None:
        raw = []
    elif isinstance(raw, (str, Enum)):
        raw = [raw]

    states: list[str] = []
    active = False
    unknown: list[str] = []
    for status in raw:
        value = status.value if isinstance(status, Enum) else str(status)
        if value == ACTIVE_STATUS:
            active = True
        elif value in STATUS_ALIASES:
            states.append(STATUS_ALIASES[value])
        else:
            unknown.append(value)
    return states, active, unknown


# ==================== CATALOG ====================


class TaskRequirement(BaseModel):
    """Prerequisite edge: the required task must be in one of the statuses.

    ``accepts_active`` is the catalog's ``active`` status: met by a completed
    task, or by an uncompleted one that already has a progress record.
    Unrecognized statuses are dropped with a warning.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    required_task_id: str = Field(alias="requiredTaskId", min_length=1)
    acceptable_statuses: frozenset[TaskState] = Field(
        default=frozenset(), alias="acceptableStatuses"
    )
    accepts_active: bool = Field(default=False, alias="acceptsActive")

    @model_validator(mode="before")
    @classmethod
    def normalize_statuses(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        # Catalog format: {"task": {"id": ...}, "status": ["complete", ...]}
        if "task" in data:
            task = data.get("task") or {}
            data = {"requiredTaskId": task.get("id"), "acceptableStatuses": data.get("status")}
        else:
            data = dict(data)

        key = "acceptable_statuses" if "acceptable_statuses" in data else "acceptableStatuses"
        if key not in data:
            return data

        states, active, unknown = split_requirement_statuses(data[key])
        if unknown:
            required = data.get("requiredTaskId") or data.get("required_task_id")
            logger.warning(f"Ignoring unknown requirement status(es) {unknown} on {required}")
        data[key] = states
        if active:
            data.pop("accepts_active", None)
            data["acceptsActive"] = True
        return data

    @model_validator(mode="after")
    def require_status(self) -> "TaskRequirement":
        if not self.acceptable_statuses and not self.accepts_active:
            raise ValueError("A task requirement needs at least one known status")
        return self

    @property
    def needs_completion(self) -> bool:
        """Whether a completed required task is one of the accepted states."""
        return TaskState.COMPLETED in self.acceptable_statuses or self.accepts_active

    def satisfied_by(self, status: TaskState, recorded: bool = True) -> bool:
        """Whether a required task in ``status`` meets this requirement.

        Args:
            status: Effective status of the required task.
            recorded: Whether the required task has a progress record.
        """
        if status in self.acceptable_statuses:
            return True
        if not self.accepts_active:
            return False
        return status is TaskState.COMPLETED or (status is TaskState.UNCOMPLETED and recorded)


class TaskObjective(BaseModel):
    """Objective belonging to a task (only the id matters here)."""

    model_config = ConfigDict(frozen=True)

    id: str


class Task(BaseModel):
    """A quest-like unit of progress."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str | None = None
    alternatives: tuple[str, ...] = ()
    task_requirements: tuple[TaskRequirement, ...] = Field(default=(), alias="taskRequirements")
    objectives: tuple[TaskObjective, ...] = ()
    faction_name: str | None = Field(default=None, alias="factionName")

    @field_validator("alternatives", mode="before")
    @classmethod
    def dedupe_alternatives(cls, v: Any) -> Any:
        # Ordered set: keep first occurrence
        v = _none_to_empty(v)
        return tuple(dict.fromkeys(v))

    @field_validator("task_requirements", mode="before")
    @classmethod
    def drop_unusable_requirements(cls, v: Any) -> Any:
        # Catalog entries without a task reference or any known status carry no constraint
        kept = []
        for req in _none_to_empty(v):
            if isinstance(req, dict) and "task" in req:
                required = (req.get("task") or {}).get("id")
                if not required:
                    continue
                states, active, _ = split_requirement_statuses(req.get("status"))
                if not states and not active:
                    logger.warning(
                        f"Dropping requirement on {required}: no known status in {req.get('status')!r}"
                    )
                    continue
            kept.append(req)
        return tuple(kept)

    @field_validator("objectives", mode="before")
    @classmethod
    def objectives_default(cls, v: Any) -> Any:
        return _none_to_empty(v)

    def requires(self, task_id: str) -> bool:
        """Whether any requirement of this task references task_id."""
        return any(req.required_task_id == task_id for req in self.task_requirements)


class TaskCatalog(BaseModel):
    """Read-only snapshot of every task, indexed by id.

    Passed explicitly into the engine; nothing in this package keeps a
    process-wide catalog.
    """

    model_config = ConfigDict(frozen=True)

    tasks: tuple[Task, ...] = ()

    _by_id: dict[str, Task] = PrivateAttr(default_factory=dict)
    _dependents: dict[str, tuple[str, ...]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        by_id: dict[str, Task] = {}
        dependents: dict[str, list[str]] = {}
        for task in self.tasks:
            if task.id in by_id:
                logger.warning(f"Duplicate task id in catalog: {task.id} (keeping first)")
                continue
            by_id[task.id] = task
            for req in task.task_requirements:
                ids = dependents.setdefault(req.required_task_id, [])
                if task.id not in ids:
                    ids.append(task.id)
        self._by_id = by_id
        self._dependents = {k: tuple(v) for k, v in dependents.items()}

    @property
    def is_empty(self) -> bool:
        return not self.tasks

    def get(self, task_id: str) -> Task | None:
        """Look up a task by id."""
        return self._by_id.get(task_id)

    def dependents_of(self, task_id: str) -> list[Task]:
        """Tasks whose requirements reference task_id, in catalog order."""
        return [self._by_id[dep_id] for dep_id in self._dependents.get(task_id, ())]


# ==================== PROGRESS RECORDS ====================


def status_of(raw: Mapping[str, Any] | None) -> TaskState:
    """Effective status of a stored task completion map.

    complete & failed -> failed, complete -> completed, anything else
    (including a missing record) -> uncompleted.
    """
    if not raw or not raw.get("complete"):
        return TaskState.UNCOMPLETED
    return TaskState.FAILED if raw.get("failed") else TaskState.COMPLETED


@dataclass(frozen=True)
class TaskCompletionRecord:
    """Per user, per game mode state of one task."""

    complete: bool = False
    failed: bool = False
    timestamp: int | None = None

    def __post_init__(self):
        if self.failed and not self.complete:
            raise ValueError("A failed task must also be complete")

    @property
    def status(self) -> TaskState:
        if not self.complete:
            return TaskState.UNCOMPLETED
        return TaskState.FAILED if self.failed else TaskState.COMPLETED

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TaskCompletionRecord":
        timestamp = raw.get("timestamp")
        return cls(
            complete=bool(raw.get("complete", False)),
            failed=bool(raw.get("failed", False)),
            timestamp=int(timestamp) if timestamp is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"complete": self.complete, "failed": self.failed}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data


@dataclass(frozen=True)
class TaskObjectiveRecord:
    """Per user, per game mode state of one objective."""

    complete: bool = False
    count: int | None = None
    timestamp: int | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TaskObjectiveRecord":
        count = raw.get("count")
        timestamp = raw.get("timestamp")
        return cls(
            complete=bool(raw.get("complete", False)),
            count=int(count) if count is not None else None,
            timestamp=int(timestamp) if timestamp is not None else None,
        )


# ==================== REQUESTS ====================


class TaskUpdate(BaseModel):
    """One entry of a batch task update."""

    id: str = Field(min_length=1)
    state: TaskState


class ObjectiveUpdate(BaseModel):
    """Objective change: completion state, count, or both."""

    state: TaskState | None = None
    count: int | None = Field(default=None, ge=0)

    @field_validator("state")
    @classmethod
    def no_failed_objectives(cls, v: TaskState | None) -> TaskState | None:
        if v is TaskState.FAILED:
            raise ValueError("Objectives can only be completed or uncompleted")
        return v

    @model_validator(mode="after")
    def require_change(self) -> "ObjectiveUpdate":
        if self.state is None and self.count is None:
            raise ValueError("Objective update needs a state or a count")
        return self
