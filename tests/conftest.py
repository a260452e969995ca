"""Pytest configuration for fileshare tests."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from fileshare.inmemory import InMemoryFileStorage, InMemoryShareStore
from fileshare.ratelimit import RateLimiterRegistry
from fileshare.service import SharingService
from fileshare.sharing.audit import InMemoryActivitySink
from fileshare.sharing.registry import ShareRegistry
from fileshare.sharing.tokens import CapabilityTokenCodec

SIGNING_SECRET = 'test-signing-secret-0123456789abcdef'
START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for share and token expiry."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTime:
    """Settable unix-seconds clock for rate limiting."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def store():
    return InMemoryShareStore()


@pytest.fixture
def files():
    return InMemoryFileStorage()


@pytest.fixture
def activity():
    return InMemoryActivitySink()


@pytest.fixture
def registry(store, clock):
    return ShareRegistry(store, clock=clock)


@pytest.fixture
def codec(clock):
    return CapabilityTokenCodec(SIGNING_SECRET, clock=clock)


@pytest.fixture
def service(registry, codec, activity, fake_time):
    return SharingService(
        registry,
        codec,
        RateLimiterRegistry(clock=fake_time),
        public_base_url='https://files.test',
        activity=activity,
    )
