"""
Pytest configuration file
Points every store at temporary locations and provides a controllable clock.
"""

import os
import random
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Set environment variables for testing
# IMPORTANT: This must be set BEFORE importing flowers modules.
os.environ["STORE_BACKEND"] = "memory"
os.environ["USE_MOCK_DB"] = "true"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="flowers-test-"))
os.environ.setdefault("EXPIRY_CHECK_INTERVAL_SECONDS", "0.01")

from flowers.config import Settings
from flowers.document_store import InMemoryDocumentStore
from flowers.identity_store import IdentityStore
from flowers.local_cache import LocalCache
from flowers.remote import RemoteSyncClient
from flowers.session import SessionController

START_TIME = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced replacement for ``utcnow``"""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    return Settings()


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def remote(memory_store, clock):
    return RemoteSyncClient(memory_store, clock=clock)


@pytest.fixture
def cache(tmp_path):
    return LocalCache.in_directory(tmp_path / "cache")


@pytest.fixture
def identity(tmp_path):
    return IdentityStore.in_directory(tmp_path / "identity")


@pytest.fixture
def make_session(remote, cache, identity, test_settings, clock, rng):
    """Factory so tests can build a second device against the same store"""
    def factory(**overrides):
        kwargs = dict(remote=remote, cache=cache, identity=identity,
                      config=test_settings, clock=clock, rng=rng)
        kwargs.update(overrides)
        return SessionController(**kwargs)
    return factory


@pytest.fixture
def session(make_session):
    return make_session()
