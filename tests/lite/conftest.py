"""Fixtures shared by timetable_lite tests."""

from pathlib import Path

import pytest

from tests.fixtures.timetable_data import FakeClock, InstrumentedStore, StubResolver
from timetable_lite.lite_store import SQLiteScheduleStore
from timetable_lite.mutation_coordinator import MutationCoordinator


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub_resolver() -> StubResolver:
    return StubResolver()


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "timetable.db"


@pytest.fixture
async def sqlite_store(database_path: Path) -> SQLiteScheduleStore:
    store = SQLiteScheduleStore(database_path)
    assert await store.initialize()
    return store


@pytest.fixture
def instrumented_store(sqlite_store: SQLiteScheduleStore) -> InstrumentedStore:
    return InstrumentedStore(sqlite_store)


@pytest.fixture
def coordinator(sqlite_store: SQLiteScheduleStore) -> MutationCoordinator:
    """Coordinator without a cache, used to seed stores."""
    return MutationCoordinator(sqlite_store)
