"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from itertools import count

import pytest

from dagstore.graph.service import DagService
from dagstore.graph.sqlite_store import SqliteDagStore
from dagstore.graph.store import DagStore, DictDagStore


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep DAGSTORE_* variables from the developer's shell out of tests."""
    for key in (
        "DAGSTORE_BACKEND",
        "DAGSTORE_DB_PATH",
        "DAGSTORE_BUSY_TIMEOUT",
        "DAGSTORE_OPERATION_TIMEOUT",
        "DAGSTORE_CONFIG",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest) -> Iterator[DagStore]:
    """Each backend in turn; tests using it must pass on both."""
    backend: DagStore = DictDagStore() if request.param == "memory" else SqliteDagStore()
    yield backend
    backend.close()


@pytest.fixture
def service(store: DagStore) -> DagService:
    return DagService(store)


@pytest.fixture
def sequential_ids() -> Callable[[], str]:
    """Deterministic id generator: id-0, id-1, ..."""
    counter = count()
    return lambda: f"id-{next(counter)}"
