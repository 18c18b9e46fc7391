"""Shared fixtures: a controllable clock and a throwaway SQLite cache."""

import pytest

from stock_events.core.cache import SQLiteCache
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock) -> SQLiteCache:
    return SQLiteCache(db_path=str(tmp_path / "cache.db"), clock=clock)
