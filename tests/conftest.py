"""Shared fixtures for envlock tests."""

import pytest

from envlock import crypt
from envlock.ratelimit import AttemptTracker


class FakeClock:
    """Manually advanced clock for window tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir(tmp_path):
    """Provide a temporary directory."""
    return tmp_path


@pytest.fixture
def key():
    """Provide a fresh encryption key."""
    return crypt.generate_key()


@pytest.fixture
def clock():
    """Provide a fake clock."""
    return FakeClock()


@pytest.fixture
def tracker(clock):
    """Provide an isolated attempt tracker driven by the fake clock."""
    return AttemptTracker(clock=clock)


@pytest.fixture(autouse=True)
def reset_default_tracker():
    """Keep failures recorded on the process-wide tracker out of other tests."""
    yield
    crypt.get_default_tracker().reset()
