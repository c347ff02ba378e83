"""
Deterministic pseudo-random number generator

A seeded linear congruential generator whose output is a pure function of
its 32-bit internal state. Every source of "randomness" in the kernel (ids,
backoff jitter) draws from here so that replays are reproducible bit-for-bit.

Fun fact: The constants 1664525 and 1013904223 are the "quick and dirty"
generator from Numerical Recipes. Not good enough for cryptography, but
perfectly repeatable on every machine that can multiply integers.
"""

import math

UINT32_MAX = 0xFFFFFFFF
_MODULUS = 0x100000000
_MULTIPLIER = 1664525
_INCREMENT = 1013904223


class DeterministicRNG:
    """
    Seeded LCG producing floats in [0, 1)

    Two instances constructed with the same seed and driven through the same
    call sequence produce identical outputs. Nothing else influences the
    sequence: no clock, no process state, no global generator.
    """

    def __init__(self, seed: int) -> None:
        """
        Initialize generator state

        Args:
            seed: Any integer; reduced modulo 2**32 (negative seeds wrap)
        """
        self._state = seed & UINT32_MAX

    def next(self) -> float:
        """Advance the state once and return state / 2**32"""
        self._state = (_MULTIPLIER * self._state + _INCREMENT) % _MODULUS
        return self._state / _MODULUS

    def next_int(self, min_inclusive: int, max_exclusive: int) -> int:
        """
        Map one draw into the half-open range [min_inclusive, max_exclusive)

        An empty or inverted range returns min_inclusive without advancing
        the generator.
        """
        span = max(0, max_exclusive - min_inclusive)
        if span == 0:
            return min_inclusive
        return min_inclusive + math.floor(self.next() * span)

    def snapshot(self) -> int:
        """Raw 32-bit state, suitable for persisting and re-seeding"""
        return self._state

    def reseed(self, state: int) -> None:
        """Continue from a previously captured snapshot() value"""
        self._state = state & UINT32_MAX

    def __repr__(self) -> str:
        return f"DeterministicRNG(state={self._state})"
