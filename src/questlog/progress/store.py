"""
Progress document store contract and an in-memory implementation.

The PostgreSQL implementation lives in :mod:`questlog.core.database`. Both
follow the same rules: transactions read before they write, writes are
buffered field-path updates applied at commit, and a lost write race raises
``TransactionConflictError`` instead of retrying internally.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, TypeVar

from ..core.errors import ProgressNotFoundError, TransactionConflictError
from .mutations import apply_field_updates

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProgressTransaction(ABC):
    """Read/write operations available inside one transaction."""

    @abstractmethod
    async def get(self, user_id: str) -> dict[str, Any] | None:
        """Read a progress document, or None if it does not exist."""

    @abstractmethod
    def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        """Buffer field-path updates; applied when the transaction commits."""


class ProgressStore(ABC):
    """Per-user progress documents keyed by user id."""

    @abstractmethod
    async def run_transaction(
        self, callback: Callable[[ProgressTransaction], Awaitable[T]]
    ) -> T:
        """Run callback in a single transaction attempt and commit it."""

    @abstractmethod
    async def get(self, user_id: str) -> dict[str, Any] | None:
        """Read a progress document outside any transaction."""

    @abstractmethod
    async def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        """Apply field-path updates to an existing document.

        Raises:
            ProgressNotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def set(self, user_id: str, data: Mapping[str, Any], merge: bool = True) -> None:
        """Create or overwrite a document (merge keeps unrelated fields)."""


class _MemoryTransaction(ProgressTransaction):
    def __init__(self, store: "InMemoryProgressStore"):
        self._store = store
        self.read_versions: dict[str, int] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []

    async def get(self, user_id: str) -> dict[str, Any] | None:
        if self.writes:
            raise RuntimeError("Transactions must read before writing")
        self.read_versions[user_id] = self._store.versions.get(user_id, 0)
        doc = self._store.documents.get(user_id)
        return copy.deepcopy(doc) if doc is not None else None

    def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        self.writes.append((user_id, dict(updates)))


class InMemoryProgressStore(ProgressStore):
    """Progress store kept in process memory.

    Uses optimistic concurrency: every document carries a version that is
    bumped on each write, and a transaction whose read version changed
    before commit fails with TransactionConflictError.
    """

    def __init__(self, documents: Mapping[str, dict[str, Any]] | None = None):
        self.documents: dict[str, dict[str, Any]] = copy.deepcopy(dict(documents or {}))
        self.versions: dict[str, int] = {user_id: 1 for user_id in self.documents}
        self.commits = 0
        self._lock = asyncio.Lock()

    async def run_transaction(
        self, callback: Callable[[ProgressTransaction], Awaitable[T]]
    ) -> T:
        tx = _MemoryTransaction(self)
        result = await callback(tx)
        async with self._lock:
            self._check_versions(tx)
            for user_id, _ in tx.writes:
                if user_id not in self.documents:
                    raise ProgressNotFoundError(user_id)
            for user_id, updates in tx.writes:
                self._apply(user_id, updates)
            if tx.writes:
                self.commits += 1
        return result

    def _check_versions(self, tx: _MemoryTransaction) -> None:
        for user_id, version in tx.read_versions.items():
            if self.versions.get(user_id, 0) != version:
                raise TransactionConflictError(
                    f"Progress document for {user_id} changed during transaction"
                )

    def _apply(self, user_id: str, updates: Mapping[str, Any]) -> None:
        apply_field_updates(self.documents[user_id], updates)
        self.versions[user_id] = self.versions.get(user_id, 0) + 1

    async def get(self, user_id: str) -> dict[str, Any] | None:
        doc = self.documents.get(user_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        async with self._lock:
            if user_id not in self.documents:
                raise ProgressNotFoundError(user_id)
            self._apply(user_id, updates)

    async def set(self, user_id: str, data: Mapping[str, Any], merge: bool = True) -> None:
        async with self._lock:
            if merge and user_id in self.documents:
                _deep_merge(self.documents[user_id], copy.deepcopy(dict(data)))
            else:
                self.documents[user_id] = copy.deepcopy(dict(data))
            self.versions[user_id] = self.versions.get(user_id, 0) + 1


def _deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
