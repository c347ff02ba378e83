"""
Test Helper Functions - Stand-ins and Assertions

Provides reusable fakes for the async and storage seams (sleep, remote
calls, key-value stores) plus a chain assertion shared by the kernel and
facade tests.

Fun fact: Gerard Meszaros sorted test doubles into dummies, stubs, spies,
mocks and fakes in 2007. Everything in here is a spy or a fake.
"""

from prometheus_client import REGISTRY

from warstack.kernel.ledger import GENESIS_HASH, LedgerEntry
from warstack.kernel.storage import InMemoryStore


class RecordingSleep:
    """Awaitable sleep stand-in that records requested delays instead of waiting"""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class HttpError(Exception):
    """Remote failure exposing a status attribute, like most HTTP clients do"""

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


class Flaky:
    """Async callable that fails a fixed number of times before succeeding"""

    def __init__(self, failures: list[BaseException], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class CountingStore(InMemoryStore):
    """In-memory store that counts writes"""

    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        super().set(key, value)


class FailingStore(InMemoryStore):
    """Store whose writes fail until `healthy` is flipped"""

    def __init__(self) -> None:
        super().__init__()
        self.healthy = False
        self.attempts = 0

    def set(self, key: str, value: str) -> None:
        self.attempts += 1
        if not self.healthy:
            raise OSError("disk full")
        super().set(key, value)


def assert_chain_intact(entries: list[LedgerEntry]) -> None:
    """Assert genesis link, predecessor links and non-decreasing timestamps"""
    assert entries, "expected at least one entry"
    assert entries[0].previous_hash == GENESIS_HASH
    for previous, current in zip(entries, entries[1:]):
        assert current.previous_hash == previous.hash
        assert current.timestamp >= previous.timestamp


def sample(name: str, **labels: str) -> float:
    """Current value of a Prometheus sample, 0.0 if never observed"""
    return REGISTRY.get_sample_value(name, labels or None) or 0.0
