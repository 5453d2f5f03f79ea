"""Task progress: catalog models, dependency engine and the progress service."""

from .catalog import (
    CatalogProvider,
    load_catalog,
    parse_catalog,
)
from .dependencies import (
    DependencyOutcome,
    ProgressSnapshot,
    check_all_requirements_met,
    requirements_met,
    update_alternative_tasks,
    update_task_state,
)
from .formatting import (
    FormattedProgress,
    ProgressItem,
    extract_game_mode_data,
    format_progress,
    invalidate_task,
    invalidate_tasks,
)
from .models import (
    GameMode,
    ObjectiveUpdate,
    Task,
    TaskCatalog,
    TaskCompletionRecord,
    TaskObjective,
    TaskObjectiveRecord,
    TaskRequirement,
    TaskState,
    TaskUpdate,
    status_of,
)
from .mutations import (
    DELETE_FIELD,
    apply_field_updates,
    objective_fields,
    task_completion_fields,
)
from .service import (
    CommitResult,
    ProgressService,
    TaskUpdateResult,
)
from .store import (
    InMemoryProgressStore,
    ProgressStore,
    ProgressTransaction,
)

__all__ = [
    # Catalog
    "CatalogProvider",
    "load_catalog",
    "parse_catalog",
    # Dependencies
    "DependencyOutcome",
    "ProgressSnapshot",
    "check_all_requirements_met",
    "requirements_met",
    "update_alternative_tasks",
    "update_task_state",
    # Formatting
    "FormattedProgress",
    "ProgressItem",
    "extract_game_mode_data",
    "format_progress",
    "invalidate_task",
    "invalidate_tasks",
    # Models
    "GameMode",
    "ObjectiveUpdate",
    "Task",
    "TaskCatalog",
    "TaskCompletionRecord",
    "TaskObjective",
    "TaskObjectiveRecord",
    "TaskRequirement",
    "TaskState",
    "TaskUpdate",
    "status_of",
    # Mutations
    "DELETE_FIELD",
    "apply_field_updates",
    "objective_fields",
    "task_completion_fields",
    # Service
    "CommitResult",
    "ProgressService",
    "TaskUpdateResult",
    # Store
    "InMemoryProgressStore",
    "ProgressStore",
    "ProgressTransaction",
]
