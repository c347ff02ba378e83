"""
Kernel - deterministic event processing and its hash-chained ledger

The kernel provides the machinery everything else builds on: a seeded RNG,
replay-stable ids, validated events, an append-only ledger whose entries
commit to their predecessors, and bounded recovery from bad input.

Fun fact: Accountants have kept append-only ledgers for centuries - they
never erase an entry, they add a correcting one. The kernel does the same.
"""

from warstack.kernel.bus import EventBus
from warstack.kernel.config import (
    DeterminismConfig,
    PersistencePolicy,
    ResiliencePolicy,
    WarStackConfig,
)
from warstack.kernel.errors import (
    AIError,
    AIErrorCategory,
    ErrorCode,
    InvalidEventStructure,
    InvalidState,
    KernelError,
    LedgerIntegrityBreach,
    RecoverableKernelError,
    RecoveryLimitExceeded,
    RemoteCallError,
    SnapshotError,
    TerminalKernelError,
    ValidationFailed,
    WarStackError,
)
from warstack.kernel.events import KernelEvent, WarStackMode, parse_event
from warstack.kernel.ids import DeterministicIdFactory, IdFactory, RandomIdFactory
from warstack.kernel.ledger import GENESIS_HASH, Ledger, LedgerEntry
from warstack.kernel.rng import DeterministicRNG
from warstack.kernel.state_machine import KernelState, WarStackKernel
from warstack.kernel.time import FixedTimeProvider, RealTimeProvider, TimeProvider

__all__ = [
    # Determinism
    "DeterministicRNG",
    "IdFactory",
    "DeterministicIdFactory",
    "RandomIdFactory",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "FixedTimeProvider",
    # Events & Ledger
    "KernelEvent",
    "WarStackMode",
    "parse_event",
    "GENESIS_HASH",
    "Ledger",
    "LedgerEntry",
    # Kernel
    "KernelState",
    "WarStackKernel",
    "EventBus",
    # Config
    "DeterminismConfig",
    "PersistencePolicy",
    "ResiliencePolicy",
    "WarStackConfig",
    # Errors
    "WarStackError",
    "ErrorCode",
    "KernelError",
    "RecoverableKernelError",
    "TerminalKernelError",
    "ValidationFailed",
    "RecoveryLimitExceeded",
    "InvalidEventStructure",
    "LedgerIntegrityBreach",
    "InvalidState",
    "AIError",
    "AIErrorCategory",
    "RemoteCallError",
    "SnapshotError",
]
