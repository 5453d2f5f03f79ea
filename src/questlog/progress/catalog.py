"""
Load the task catalog from a YAML or JSON file.

The catalog is reference data produced by an external ingestion job. The
provider caches one validated snapshot per instance and hands it to the
service explicitly.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..core.errors import CatalogLoadError
from .models import TaskCatalog

logger = logging.getLogger(__name__)


def parse_catalog(raw_data: Any) -> TaskCatalog:
    """Validate raw catalog data.

    Accepts a bare list of tasks, ``{"tasks": [...]}``, or the API response
    shape ``{"data": {"tasks": [...]}}``.

    Raises:
        CatalogLoadError: If the data does not describe a catalog.
    """
    if isinstance(raw_data, dict) and "data" in raw_data and "tasks" not in raw_data:
        raw_data = raw_data["data"]
    if isinstance(raw_data, list):
        raw_data = {"tasks": raw_data}
    if not isinstance(raw_data, dict) or "tasks" not in raw_data:
        raise CatalogLoadError("Catalog must be a list of tasks or a mapping with 'tasks'")

    try:
        return TaskCatalog(tasks=raw_data["tasks"] or [])
    except ValidationError as e:
        raise CatalogLoadError(f"Catalog validation failed: {e}") from e


def load_catalog(path: Path | str) -> TaskCatalog:
    """Load and validate a task catalog file.

    Args:
        path: Path to a .yaml/.yml/.json catalog file.

    Returns:
        Validated TaskCatalog.

    Raises:
        CatalogLoadError: If the file is missing, unreadable or invalid.
    """
    path = Path(path)
    if not path.exists():
        raise CatalogLoadError(f"Catalog file not found: {path}")

    logger.info(f"Loading task catalog from {path}")

    try:
        with open(path, encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"Could not read catalog {path}: {e}") from e

    if not raw_data:
        raise CatalogLoadError(f"Empty catalog file: {path}")

    catalog = parse_catalog(raw_data)
    logger.info(f"✓ Task catalog loaded: {len(catalog.tasks)} tasks")
    return catalog


class CatalogProvider:
    """Caching source of the task catalog.

    Concurrent first calls share a single load. A failed load is cached as
    None (the dependency engine treats that as "nothing to do") until
    clear_cache() is called.
    """

    def __init__(self, path: Path | str | None = None, catalog: TaskCatalog | None = None):
        self.path = Path(path) if path else None
        self._catalog = catalog
        self._loaded = catalog is not None
        self._lock = asyncio.Lock()

    @classmethod
    def from_catalog(cls, catalog: TaskCatalog) -> "CatalogProvider":
        """Provider serving an already built catalog."""
        return cls(catalog=catalog)

    async def get_task_catalog(self) -> TaskCatalog | None:
        if self._loaded:
            return self._catalog

        async with self._lock:
            if self._loaded:
                return self._catalog

            if self.path is None:
                logger.warning("No catalog path configured, dependency updates disabled")
                self._catalog = None
            else:
                try:
                    self._catalog = await asyncio.to_thread(load_catalog, self.path)
                except CatalogLoadError as e:
                    logger.error(f"Error loading task catalog: {e}")
                    self._catalog = None
            self._loaded = True
            return self._catalog

    def clear_cache(self) -> None:
        """Drop the cached catalog so the next call reloads it."""
        if self.path is not None:
            self._catalog = None
            self._loaded = False
