import sys
from pathlib import Path

import pytest

# Ensure the backend root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import utils  # noqa: E402
from providers import groq  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    """Process-wide caches and the generator throttle start empty per test."""
    monkeypatch.setattr(utils.validation_cache, "_store", {})
    monkeypatch.setattr(utils.coordinate_cache, "_store", {})
    monkeypatch.setattr(groq.throttle, "_last", None)
    yield
