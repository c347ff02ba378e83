"""
Identifier generation for replayable sessions

Deterministic ids combine a monotonic call counter with one RNG draw, so a
session replayed with the same seed and the same call order mints exactly
the same identifiers.

Caller obligation: the factory cannot detect reordering. If two code paths
race to call next_id() in a different order on replay, the ids swap. Keep
id generation on a single logical timeline.
"""

import secrets
from typing import Protocol

from warstack.kernel.rng import UINT32_MAX, DeterministicRNG


class IdFactory(Protocol):
    """Protocol for ID generation strategies"""

    def next_id(self) -> str:
        """Generate a new unique ID"""
        ...

    @property
    def counter(self) -> int: ...

    def resume(self, counter: int) -> None:
        """Continue numbering after `counter` ids were already minted"""
        ...


class DeterministicIdFactory:
    """
    Replay-stable ids of the form "{prefix}_{counter:08x}_{draw:08x}"

    Shares its RNG with whoever else was handed the same instance (e.g. the
    backoff jitter source), which is intentional: one seed, one timeline.
    """

    def __init__(self, rng: DeterministicRNG, prefix: str) -> None:
        self._rng = rng
        self._prefix = prefix
        self._counter = 0

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def counter(self) -> int:
        """Number of ids minted so far"""
        return self._counter

    def resume(self, counter: int) -> None:
        if counter < 0:
            raise ValueError(f"Id counter must be non-negative, got {counter}")
        self._counter = counter

    def next_id(self) -> str:
        self._counter += 1
        draw = self._rng.next_int(0, UINT32_MAX)
        return f"{self._prefix}_{self._counter:08x}_{draw:08x}"


class RandomIdFactory:
    """Same id shape, but the random half comes from the OS entropy pool"""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._counter = 0

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def counter(self) -> int:
        return self._counter

    def resume(self, counter: int) -> None:
        if counter < 0:
            raise ValueError(f"Id counter must be non-negative, got {counter}")
        self._counter = counter

    def next_id(self) -> str:
        self._counter += 1
        return f"{self._prefix}_{self._counter:08x}_{secrets.randbits(32):08x}"
