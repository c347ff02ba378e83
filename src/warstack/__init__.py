"""
WarStack - Deterministic orchestration kernel with a hash-chained ledger

Every state change is an event, every event is a link in a tamper-evident
chain, and every source of randomness is seeded so a session can be
replayed bit-for-bit. Unreliable AI calls are wrapped in deterministic
exponential backoff, and session state is persisted on a debounce.

Fun fact: A replayable log is the oldest debugging tool there is - flight
recorders have done the same thing for aircraft since the 1950s.
"""

from warstack.warstack import WarStack

__version__ = "0.1.0"
__all__ = ["WarStack", "__version__"]
