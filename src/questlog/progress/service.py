"""
Progress service: the read/write API for a user's task progress.

Task updates run in two phases with separate error channels:

1. Primary: the changed task records are written in one transaction,
   retried on write conflicts up to a small bound. Failures raise ApiError.
2. Secondary: after commit, the dependency engine cascades to alternatives
   and evaluates dependents. Failures are logged and recorded in the
   returned outcome; they never fail the request.

The two phases are not atomic with each other. A crash between them leaves
the changed task updated and its alternatives stale.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import ValidationError

from ..config import DependencyConfig, TransactionConfig
from ..core.errors import ApiError, ProgressNotFoundError, TransactionConflictError
from ..core.retry import RetryBackoff, run_with_retry
from ..core.tracing import generate_request_id, reset_request_id, set_request_id, span
from .catalog import CatalogProvider
from .dependencies import DependencyOutcome, update_task_state
from .formatting import FormattedProgress, extract_game_mode_data, format_progress
from .models import GameMode, ObjectiveUpdate, TaskCompletionRecord, TaskState, TaskUpdate
from .mutations import FieldUpdates, now_ms, objective_fields, task_completion_fields
from .store import ProgressStore, ProgressTransaction

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Result of the primary transaction."""

    timestamp: int
    attempts: int
    fields: int


@dataclass
class TaskUpdateResult:
    """Both phases of a task update, kept apart."""

    commit: CommitResult
    outcomes: list[DependencyOutcome] = field(default_factory=list)

    @property
    def cascade_ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)


def _parse_state(state: TaskState | str) -> TaskState:
    try:
        return TaskState(state)
    except ValueError:
        raise ApiError.bad_request(f"Invalid task state: {state}") from None


def _parse_game_mode(game_mode: GameMode | str) -> GameMode:
    try:
        return GameMode(game_mode)
    except ValueError:
        raise ApiError.bad_request(f"Invalid game mode: {game_mode}") from None


class ProgressService:
    """Reads and writes task progress for one store and catalog."""

    def __init__(
        self,
        store: ProgressStore,
        catalog_provider: CatalogProvider,
        transactions: TransactionConfig | None = None,
        dependencies: DependencyConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.catalog_provider = catalog_provider
        self.transactions = transactions or TransactionConfig()
        self.dependencies = dependencies or DependencyConfig()
        self.clock = clock

    # ==================== PRIMARY PHASE ====================

    async def _commit_task_states(
        self,
        user_id: str,
        states: Mapping[str, TaskState],
        game_mode: GameMode,
    ) -> CommitResult:
        """Write task states in one transaction, retrying on conflicts.

        Raises:
            ProgressNotFoundError: If the user has no progress document.
            RetryExhaustedError: If every attempt conflicted.
        """
        timestamp = self.clock()
        fields: FieldUpdates = {}
        for task_id, state in states.items():
            task_completion_fields(game_mode, task_id, state, timestamp, fields)

        async def apply(tx: ProgressTransaction) -> None:
            if await tx.get(user_id) is None:
                raise ProgressNotFoundError(user_id)
            tx.update(user_id, fields)

        async def attempt() -> None:
            await self.store.run_transaction(apply)

        backoff = RetryBackoff(
            base_delay=self.transactions.base_delay,
            max_delay=self.transactions.max_delay,
            jitter=self.transactions.jitter,
        )
        with span("progress.transaction", user_id=user_id, tasks=len(states)) as tx_span:
            _, attempts = await run_with_retry(
                attempt,
                max_attempts=self.transactions.max_attempts,
                backoff=backoff,
                retry_on=(TransactionConflictError,),
                label=f"Progress transaction for {user_id}",
            )
            tx_span.set_attribute("attempts", attempts)

        return CommitResult(timestamp=timestamp, attempts=attempts, fields=len(fields))

    # ==================== SECONDARY PHASE ====================

    async def _resolve_dependencies(
        self, user_id: str, task_id: str, state: TaskState, game_mode: GameMode
    ) -> DependencyOutcome:
        """Run the dependency engine for one task; never raises."""
        try:
            catalog = await self.catalog_provider.get_task_catalog()
            return await asyncio.wait_for(
                update_task_state(
                    task_id, state, user_id, catalog, self.store, game_mode, self.clock
                ),
                timeout=self.dependencies.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Task dependency update timed out after {self.dependencies.timeout}s "
                f"(user={user_id}, task={task_id}, state={state.value})"
            )
            return DependencyOutcome(
                task_id=task_id,
                state=state,
                error=f"timed out after {self.dependencies.timeout}s",
            )
        except Exception as e:
            logger.error(
                f"Error updating task dependencies: {e} "
                f"(user={user_id}, task={task_id}, state={state.value})",
                exc_info=True,
            )
            return DependencyOutcome(task_id=task_id, state=state, error=str(e))

    # ==================== PUBLIC API ====================

    async def update_single_task(
        self,
        user_id: str,
        task_id: str,
        state: TaskState | str,
        game_mode: GameMode | str = GameMode.PVP,
    ) -> TaskUpdateResult:
        """Set one task's state, then cascade to its alternatives.

        Raises:
            ApiError: 400 for an invalid state or mode; 500 if the progress
                document does not exist or the transaction cannot commit.
        """
        state = _parse_state(state)
        mode = _parse_game_mode(game_mode)
        token = set_request_id(generate_request_id())
        try:
            try:
                commit = await self._commit_task_states(user_id, {task_id: state}, mode)
            except Exception as e:
                logger.error(
                    f"Error updating single task: {e} "
                    f"(user={user_id}, task={task_id}, state={state.value})"
                )
                raise ApiError.internal("Failed to update task") from e

            logger.info(
                f"Single task update committed (user={user_id}, task={task_id}, "
                f"state={state.value}, attempts={commit.attempts})"
            )

            outcome = await self._resolve_dependencies(user_id, task_id, state, mode)
            return TaskUpdateResult(commit=commit, outcomes=[outcome])
        finally:
            reset_request_id(token)

    async def update_multiple_tasks(
        self,
        user_id: str,
        updates: Iterable[TaskUpdate | Mapping[str, Any]],
        game_mode: GameMode | str = GameMode.PVP,
    ) -> TaskUpdateResult:
        """Set several task states in one transaction.

        The direct writes for the whole batch commit together or not at all.
        Dependency resolution then runs for every task concurrently, each
        isolated from the others.

        Raises:
            ApiError: 400 for an empty or invalid batch; 500 as for
                update_single_task.
        """
        mode = _parse_game_mode(game_mode)
        try:
            parsed = [TaskUpdate.model_validate(update) for update in updates]
        except ValidationError as e:
            raise ApiError.bad_request(f"Invalid task update: {e}") from e
        if not parsed:
            raise ApiError.bad_request("No task updates given")

        # Later entries for the same task win
        states = {update.id: update.state for update in parsed}

        token = set_request_id(generate_request_id())
        try:
            try:
                commit = await self._commit_task_states(user_id, states, mode)
            except Exception as e:
                logger.error(
                    f"Error updating multiple tasks: {e} (user={user_id}, tasks={len(states)})"
                )
                raise ApiError.internal("Failed to update tasks") from e

            logger.info(
                f"Multiple tasks committed (user={user_id}, tasks={len(states)}, "
                f"attempts={commit.attempts})"
            )

            results = await asyncio.gather(
                *(
                    self._resolve_dependencies(user_id, task_id, state, mode)
                    for task_id, state in states.items()
                ),
                return_exceptions=True,
            )
            outcomes = []
            for (task_id, state), result in zip(states.items(), results):
                if isinstance(result, BaseException):
                    logger.error(
                        f"Dependency resolution aborted in batch: {result!r} "
                        f"(user={user_id}, task={task_id}, state={state.value})"
                    )
                    result = DependencyOutcome(task_id=task_id, state=state, error=repr(result))
                outcomes.append(result)
            return TaskUpdateResult(commit=commit, outcomes=outcomes)
        finally:
            reset_request_id(token)

    async def update_task_objective(
        self,
        user_id: str,
        objective_id: str,
        update: ObjectiveUpdate | Mapping[str, Any],
        game_mode: GameMode | str = GameMode.PVP,
    ) -> None:
        """Set an objective's completion and/or count. No cascade."""
        mode = _parse_game_mode(game_mode)
        try:
            update = ObjectiveUpdate.model_validate(update)
        except ValidationError as e:
            raise ApiError.bad_request(f"Invalid objective update: {e}") from e

        fields = objective_fields(mode, objective_id, update, self.clock())
        try:
            await self.store.update(user_id, fields)
        except Exception as e:
            logger.error(
                f"Error updating task objective: {e} (user={user_id}, objective={objective_id})"
            )
            raise ApiError.internal("Failed to update task objective") from e

        logger.info(f"Task objective updated (user={user_id}, objective={objective_id})")

    async def get_task_status(
        self,
        user_id: str,
        task_id: str,
        game_mode: GameMode | str = GameMode.PVP,
    ) -> TaskCompletionRecord | None:
        """Stored record of one task, or None if there is none."""
        mode = _parse_game_mode(game_mode)
        try:
            document = await self.store.get(user_id)
            mode_data = extract_game_mode_data(document, mode) or {}
            raw = (mode_data.get("taskCompletions") or {}).get(task_id)
            return TaskCompletionRecord.from_dict(raw) if raw is not None else None
        except Exception as e:
            logger.error(f"Error getting task status: {e} (user={user_id}, task={task_id})")
            raise ApiError.internal("Failed to get task status") from e

    async def get_user_progress(
        self, user_id: str, game_mode: GameMode | str = GameMode.PVP
    ) -> FormattedProgress:
        """Formatted progress for one game mode, with invalid tasks marked."""
        mode = _parse_game_mode(game_mode)
        try:
            document, catalog = await asyncio.gather(
                self.store.get(user_id),
                self.catalog_provider.get_task_catalog(),
            )
        except Exception as e:
            logger.error(f"Error fetching user progress: {e} (user={user_id})")
            raise ApiError.internal("Failed to retrieve user progress") from e

        if catalog is None:
            logger.error(f"Failed to load task catalog for progress of {user_id}")
            raise ApiError.internal("Failed to load essential game data")

        return format_progress(document, user_id, catalog, mode)
