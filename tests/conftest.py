"""Test configuration for pytest."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from savings_ledger.persistence.database import LedgerStore
from savings_ledger.persistence.policies import Identity


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "conformance: API contract conformance tests")


class TickingClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2025, 10, 3, 14, 23, 33, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def u1():
    return Identity("u1")


@pytest.fixture
def u2():
    return Identity("u2")


@pytest.fixture
def store(clock):
    """In-memory store with two registered identities and no profiles."""
    with LedgerStore(":memory:", time_provider=clock) as s:
        s.register_identity("u1")
        s.register_identity("u2")
        yield s


@pytest.fixture
def ledger(store, u1, u2):
    """Store where both members have created their profiles."""
    store.insert_profile(u1, name="Alice")
    store.insert_profile(u2, name="Bob")
    return store
