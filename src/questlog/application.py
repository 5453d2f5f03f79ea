"""Questlog application - service wiring and lifecycle management."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from questlog.config import QuestlogConfig
from questlog.core.database import Database
from questlog.core.tracing import init_tracing
from questlog.progress.catalog import CatalogProvider
from questlog.progress.models import GameMode
from questlog.progress.service import ProgressService
from questlog.progress.store import ProgressStore


logger = logging.getLogger("questlog")


class AppState(Enum):
    """Application lifecycle states."""
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class Services:
    """Container for all application services."""
    config: QuestlogConfig
    store: ProgressStore
    catalog: CatalogProvider
    progress: ProgressService
    database: Optional[Database] = None

    @property
    def db_available(self) -> bool:
        """Check if a database connection is in use."""
        return self.database is not None and self.database.pool is not None


def new_progress_document(faction: str = "USEC") -> dict[str, Any]:
    """Empty progress document with both game modes."""
    def mode_data() -> dict[str, Any]:
        return {
            "level": 1,
            "pmcFaction": faction,
            "taskCompletions": {},
            "taskObjectives": {},
        }

    return {
        "currentGameMode": GameMode.PVP.value,
        "gameEdition": 1,
        GameMode.PVP.value: mode_data(),
        GameMode.PVE.value: mode_data(),
    }


class QuestlogApplication:
    """Wires the store, catalog and progress service together.

    Provides clean dependency injection and testability: pass a store to
    initialize() to skip PostgreSQL entirely.
    """

    def __init__(self, config: QuestlogConfig):
        self.config = config
        self.state = AppState.CREATED
        self.services: Optional[Services] = None

    @property
    def progress(self) -> ProgressService:
        if self.services is None or self.state != AppState.RUNNING:
            raise RuntimeError(f"Application not running (state: {self.state.value})")
        return self.services.progress

    async def initialize(self, store: ProgressStore | None = None) -> None:
        """Initialize all services.

        Args:
            store: Progress store to use. If None, connects to PostgreSQL.

        Raises:
            RuntimeError: If initialization fails.
        """
        if self.state != AppState.CREATED:
            raise RuntimeError(f"Cannot initialize from state: {self.state}")

        self.state = AppState.STARTING
        logger.info("Initializing questlog...")
        init_tracing()

        database: Database | None = None
        try:
            if store is None:
                database = Database(self.config.database.model_dump())
                await asyncio.wait_for(
                    database.connect(),
                    timeout=self.config.database.connect_timeout
                )
                await database.ensure_schema()
                logger.info(
                    f"Database connected: {self.config.database.host}:"
                    f"{self.config.database.port}/{self.config.database.database}"
                )
                store = database

            catalog = CatalogProvider(self.config.catalog.path)
            progress = ProgressService(
                store,
                catalog,
                transactions=self.config.transactions,
                dependencies=self.config.dependencies,
            )

            self.services = Services(
                config=self.config,
                store=store,
                catalog=catalog,
                progress=progress,
                database=database,
            )
            self.state = AppState.RUNNING
            logger.info("All services initialized successfully")

        except Exception as e:
            self.state = AppState.FAILED
            if database is not None:
                await database.close()
            logger.error(f"Initialization failed: {e}", exc_info=True)
            raise RuntimeError(f"Failed to initialize questlog: {e}") from e

    async def create_progress(self, user_id: str, faction: str = "USEC") -> None:
        """Create a user's progress document if it does not exist yet."""
        store = self.services.store
        if await store.get(user_id) is not None:
            logger.info(f"Progress document already exists for {user_id}")
            return
        await store.set(user_id, new_progress_document(faction), merge=False)
        logger.info(f"Progress document created for {user_id}")

    async def shutdown(self) -> None:
        """Gracefully shutdown all services."""
        if self.state in (AppState.STOPPING, AppState.STOPPED):
            return

        self.state = AppState.STOPPING
        logger.info("Shutting down questlog...")

        if self.services and self.services.db_available:
            await self.services.database.close()

        self.state = AppState.STOPPED
        logger.info("questlog stopped")
