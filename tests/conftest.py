"""Shared fixtures: controllable clock, failing store, scheduler cleanup."""

import time

import pytest

from persistent_caching import clock, shutdown_scheduler


class FakeClock:
    """Callable replacement for clock.now() that only moves when told to."""

    def __init__(self, start: float):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FailingStore:
    """Store whose every operation raises."""

    def __init__(self, message: str = "store unavailable"):
        self.message = message

    def get(self, key):
        raise OSError(self.message)

    def set(self, key, raw):
        raise OSError(self.message)

    def delete(self, key):
        raise OSError(self.message)


@pytest.fixture
def fake_clock(monkeypatch):
    """Freeze clock.now() at the current time; advance it explicitly."""
    fc = FakeClock(time.time())
    monkeypatch.setattr(clock, "now", fc)
    return fc


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture(autouse=True)
def cleanup():
    """Stop eviction sweeps between tests."""
    yield
    shutdown_scheduler(wait=False)
