"""
Pytest configuration and shared fixtures

Fun fact: Files named conftest.py are discovered automatically, and their
fixtures are available to every test in the same directory and below.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from tests.helpers import RecordingSleep
from warstack.kernel.config import PersistencePolicy, ResiliencePolicy, WarStackConfig
from warstack.kernel.ledger import Ledger
from warstack.kernel.state_machine import WarStackKernel
from warstack.kernel.storage import InMemoryStore
from warstack.kernel.time import FixedTimeProvider
from warstack.warstack import WarStack


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "warstack.db"


@pytest.fixture
def test_time() -> FixedTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC
    """
    return FixedTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(test_time: FixedTimeProvider) -> Ledger:
    return Ledger(time_provider=test_time)


@pytest.fixture
def kernel(test_time: FixedTimeProvider) -> WarStackKernel:
    return WarStackKernel(42, time_provider=test_time)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_config() -> WarStackConfig:
    """Default config with short persistence timers"""
    return WarStackConfig(
        persistence=PersistencePolicy(debounce_ms=20, auto_persist_interval_ms=20),
        resilience=ResiliencePolicy(),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def stack(
    fast_config: WarStackConfig,
    store: InMemoryStore,
    test_time: FixedTimeProvider,
    recording_sleep: RecordingSleep,
) -> WarStack:
    return WarStack(fast_config, storage=store, time_provider=test_time, sleep=recording_sleep)
