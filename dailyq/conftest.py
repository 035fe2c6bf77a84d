# dailyq/conftest.py
import os
from datetime import datetime

import pytest

from dailyq.core.config import Settings
from dailyq.features.store.memory import MemoryAnswerStore


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture(scope="session")
def db_url():
    """
    Provide TEST_DATABASE_URL for tests.

    Returns the URL from environment, or None if not set. SQL store tests
    fall back to in-memory SQLite.
    """
    return os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, LOCAL_TIMEZONE=None, DATABASE_URL=None)


@pytest.fixture
def clock():
    # Monday 2025-03-10, 09:00 local wall clock
    return FixedClock(datetime(2025, 3, 10, 9, 0))


@pytest.fixture
def store():
    return MemoryAnswerStore()
