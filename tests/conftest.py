"""Shared fixtures: a throwaway SQLite store per test."""
import asyncio

import pytest

from market_intel.store.state import StateDB


@pytest.fixture
def state_db(tmp_path):
    db = StateDB(tmp_path / "test.db")
    asyncio.run(db.initialize())
    return db
