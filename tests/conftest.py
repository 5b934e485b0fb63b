"""
Pytest fixtures shared by the store tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from placetrack.storage import MemoryStorage


class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FailingStorage(MemoryStorage):
    """Reads work, every write is refused"""

    def write(self, key: str, data: bytes) -> bool:
        return False


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def failing_storage():
    return FailingStorage()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))
