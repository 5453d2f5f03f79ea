"""Async PostgreSQL store for per-user progress documents."""

import json
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg

from ..progress.mutations import DELETE_FIELD, flatten_fields, split_path
from ..progress.store import ProgressStore, ProgressTransaction
from .errors import ProgressNotFoundError, TransactionConflictError
from .tracing import span

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS progress (
    user_id TEXT PRIMARY KEY,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

# Errors that mean "another writer won, try again"
CONFLICT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)


def compile_field_updates(
    updates: Mapping[str, Any], first_param: int = 2
) -> tuple[str, list[Any]]:
    """Compile field-path updates into a single JSONB expression over ``data``.

    Missing parent maps are created first (from the row's current value, so
    existing siblings are kept), then leaves are set, then deletions are
    applied with ``#-``.

    Args:
        updates: Dotted field paths to values (or DELETE_FIELD).
        first_param: Number of the first positional parameter to use.

    Returns:
        Tuple of (SQL expression, positional arguments in order).
    """
    args: list[Any] = []

    def param(value: Any) -> str:
        args.append(value)
        return f"${first_param + len(args) - 1}"

    parents: dict[tuple[str, ...], None] = {}
    leaves: list[tuple[list[str], Any]] = []
    deletions: list[list[str]] = []

    for path, value in updates.items():
        parts = split_path(path)
        if value is DELETE_FIELD:
            deletions.append(parts)
            continue
        for depth in range(1, len(parts)):
            parents.setdefault(tuple(parts[:depth]), None)
        leaves.append((parts, value))

    expr = "data"
    for parent in sorted(parents, key=len):
        p = param(list(parent))
        expr = f"jsonb_set({expr}, {p}::text[], COALESCE(data #> {p}::text[], '{{}}'::jsonb), true)"
    for parts, value in leaves:
        p = param(parts)
        v = param(value)
        expr = f"jsonb_set({expr}, {p}::text[], {v}::jsonb, true)"
    for parts in deletions:
        p = param(parts)
        expr = f"({expr} #- {p}::text[])"
    return expr, args


def _update_statement(updates: Mapping[str, Any]) -> tuple[str, list[Any]]:
    expr, args = compile_field_updates(updates, first_param=2)
    query = f"UPDATE progress SET data = {expr}, updated_at = NOW() WHERE user_id = $1"
    return query, args


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


class _PostgresTransaction(ProgressTransaction):
    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn
        self._writes: list[tuple[str, dict[str, Any]]] = []

    async def get(self, user_id: str) -> dict[str, Any] | None:
        if self._writes:
            raise RuntimeError("Transactions must read before writing")
        row = await self._conn.fetchrow(
            "SELECT data FROM progress WHERE user_id = $1 FOR UPDATE", user_id
        )
        return row["data"] if row else None

    def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        self._writes.append((user_id, dict(updates)))

    async def flush(self) -> int:
        for user_id, updates in self._writes:
            if not updates:
                continue
            query, args = _update_statement(updates)
            status = await self._conn.execute(query, user_id, *args)
            if status.endswith(" 0"):
                raise ProgressNotFoundError(user_id)
        return len(self._writes)


class Database(ProgressStore):
    """Async PostgreSQL interface for progress documents.

    Documents live in one JSONB column; every write is a field-path update
    compiled to nested ``jsonb_set`` calls so concurrent writers touching
    different tasks never rewrite each other's fields.
    """

    def __init__(self, config: dict):
        self.config = config
        self.pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                host=self.config["host"],
                port=self.config["port"],
                database=self.config["database"],
                user=self.config["user"],
                password=self.config["password"],
                min_size=self.config.get("pool_min", 1),
                max_size=self.config.get("pool_max", 5),
                init=_init_connection,
            )
            logger.info("✅ Connected to PostgreSQL database")
        except Exception as e:
            logger.error(f"❌ Failed to connect to database: {e}")
            raise

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection closed")

    async def ensure_schema(self) -> None:
        """Create the progress table if it does not exist."""
        pool = self._require_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA)
        logger.debug("Progress schema ensured")

    def _require_pool(self) -> asyncpg.Pool:
        if not self.pool:
            raise RuntimeError("Database not connected")
        return self.pool

    async def run_transaction(
        self, callback: Callable[[ProgressTransaction], Awaitable[T]]
    ) -> T:
        """Run callback in one SERIALIZABLE transaction attempt."""
        pool = self._require_pool()
        with span("db.transaction", query_type="progress_transaction") as db_span:
            try:
                async with pool.acquire() as conn:
                    async with conn.transaction(isolation="serializable"):
                        tx = _PostgresTransaction(conn)
                        result = await callback(tx)
                        writes = await tx.flush()
                db_span.set_attribute("writes", writes)
                return result
            except CONFLICT_ERRORS as e:
                db_span.set_attribute("conflict", True)
                raise TransactionConflictError(str(e)) from e

    async def get(self, user_id: str) -> dict[str, Any] | None:
        pool = self._require_pool()
        with span("db.query:progress", user_id=user_id, query_type="progress_get") as db_span:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("SELECT data FROM progress WHERE user_id = $1", user_id)
            db_span.set_attribute("found", row is not None)
            return row["data"] if row else None

    async def update(self, user_id: str, updates: Mapping[str, Any]) -> None:
        if not updates:
            return
        pool = self._require_pool()
        query, args = _update_statement(updates)
        with span("db.query:progress_update", user_id=user_id, fields=len(updates)):
            async with pool.acquire() as conn:
                status = await conn.execute(query, user_id, *args)
        if status.endswith(" 0"):
            raise ProgressNotFoundError(user_id)

    async def set(self, user_id: str, data: Mapping[str, Any], merge: bool = True) -> None:
        pool = self._require_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                if not merge:
                    await conn.execute(
                        """
                        INSERT INTO progress (user_id, data) VALUES ($1, $2::jsonb)
                        ON CONFLICT (user_id) DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                        """,
                        user_id,
                        dict(data),
                    )
                    return
                await conn.execute(
                    "INSERT INTO progress (user_id) VALUES ($1) ON CONFLICT (user_id) DO NOTHING",
                    user_id,
                )
                fields = flatten_fields(data)
                if fields:
                    query, args = _update_statement(fields)
                    await conn.execute(query, user_id, *args)
