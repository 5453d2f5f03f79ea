"""Shared fixtures for progress tests."""

import pytest

from questlog.config import DependencyConfig, TransactionConfig
from questlog.progress.catalog import CatalogProvider, parse_catalog
from questlog.progress.service import ProgressService
from questlog.progress.store import InMemoryProgressStore

NOW = 1_700_000_000_000


def fixed_clock() -> int:
    return NOW


@pytest.fixture
def catalog():
    """Catalog with an alternative group and a few dependents of task A."""
    return parse_catalog({
        "tasks": [
            {"id": "A", "name": "Alpha", "alternatives": ["B", "C"]},
            {"id": "B", "name": "Bravo", "alternatives": ["A"]},
            {"id": "C", "name": "Charlie"},
            {
                "id": "D",
                "name": "Delta",
                "taskRequirements": [{"task": {"id": "A"}, "status": ["complete"]}],
                "objectives": [{"id": "D-obj"}],
            },
            {
                "id": "E",
                "name": "Echo",
                "taskRequirements": [{"task": {"id": "A"}, "status": ["failed"]}],
            },
            {
                "id": "F",
                "name": "Foxtrot",
                "taskRequirements": [
                    {"task": {"id": "A"}, "status": ["complete", "failed"]},
                    {"task": {"id": "C"}, "status": ["complete"]},
                ],
            },
            {"id": "G", "name": "Golf", "factionName": "BEAR"},
        ]
    })


@pytest.fixture
def document():
    """Fresh progress document with both game modes."""
    return {
        "currentGameMode": "pvp",
        "gameEdition": 2,
        "pvp": {
            "displayName": "Tester",
            "level": 15,
            "pmcFaction": "USEC",
            "taskCompletions": {},
            "taskObjectives": {},
        },
        "pve": {
            "level": 3,
            "pmcFaction": "BEAR",
            "taskCompletions": {},
            "taskObjectives": {},
        },
    }


@pytest.fixture
def store(document):
    return InMemoryProgressStore({"u1": document})


@pytest.fixture
def service(store, catalog):
    return ProgressService(
        store,
        CatalogProvider.from_catalog(catalog),
        transactions=TransactionConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0),
        dependencies=DependencyConfig(timeout=1.0),
        clock=fixed_clock,
    )


@pytest.fixture
def now():
    """Timestamp produced by the service clock in these tests."""
    return NOW
