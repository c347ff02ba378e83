"""
Kernel state machine

The kernel folds events into a small state record and appends every accepted
event to its hash-chained ledger. Transitions are pure (apply_event); the
WarStackKernel class wraps them with validation, ledger commit, integrity
verification and error recovery.

Processing order for one event:
1. Validate the event shape (recoverable on failure)
2. Compute the next state without touching the current one
3. Append to the ledger
4. Commit the state
5. Re-verify the chain (terminal on failure)
6. Notify subscribers

Fun fact: "Last-known-good" comes from Windows NT's boot menu, which kept
the previous working registry around in case the new one didn't boot.
"""

import hashlib
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from pydantic_core import PydanticSerializationError

from warstack.kernel.bus import KERNEL_RESET, LEDGER_APPENDED, EventBus, Handler, Unsubscribe
from warstack.kernel.errors import (
    InvalidState,
    LedgerIntegrityBreach,
    RecoverableKernelError,
    ValidationFailed,
)
from warstack.kernel.events import (
    CommandEvent,
    InitEvent,
    KernelEvent,
    LogEvent,
    ModeSwitchEvent,
    WarStackMode,
    event_to_dict,
    init_event,
    mode_switch_event,
    parse_event,
)
from warstack.kernel.hashing import Digest, canonical_json
from warstack.kernel.ledger import Ledger, LedgerEntry
from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import (
    kernel_cognitive_load,
    kernel_events_processed_total,
    track_duration,
)
from warstack.kernel.recovery import RecoveryPolicy
from warstack.kernel.rng import UINT32_MAX
from warstack.kernel.time import TimeProvider

logger = get_logger(__name__)

DEFAULT_SEED = 42
MAX_COGNITIVE_LOAD = 100
COMMAND_LOAD_STEP = 5


class KernelState(BaseModel):
    """Snapshot of the kernel's mutable state"""

    mode: WarStackMode = WarStackMode.IDLE
    seed: int = Field(DEFAULT_SEED, ge=0, le=UINT32_MAX)
    cognitive_load: int = Field(0, ge=0, le=MAX_COGNITIVE_LOAD)
    last_event_id: str | None = Field(None, min_length=8)


# ============================================================================
# Pure Transitions
# ============================================================================


def cognitive_load_for(mode: WarStackMode) -> int:
    """Baseline load a mode puts on the operator"""
    match mode:
        case WarStackMode.WAR:
            return 85
        case WarStackMode.FUSION:
            return 70
        case _:
            return 10


def transform_seed(seed: int, name: str) -> int:
    """
    Derive the next seed from the current one and a command name

    First four bytes of SHA-256("{seed}:{name}"), big-endian. Pure, well
    mixed, and always inside the uint32 range.
    """
    digest = hashlib.sha256(f"{seed}:{name}".encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


def apply_event(state: KernelState, event: KernelEvent) -> KernelState:
    """
    Compute the state that results from applying one event

    Returns a new KernelState; the input is never modified.
    """
    match event:
        case InitEvent():
            return state.model_copy(update={"seed": event.payload.seed})
        case ModeSwitchEvent():
            mode = event.payload.mode
            return state.model_copy(
                update={"mode": mode, "cognitive_load": cognitive_load_for(mode)}
            )
        case CommandEvent():
            return state.model_copy(
                update={
                    "seed": transform_seed(state.seed, event.payload.name),
                    "cognitive_load": min(
                        MAX_COGNITIVE_LOAD, state.cognitive_load + COMMAND_LOAD_STEP
                    ),
                }
            )
        case LogEvent():
            return state.model_copy()
        case _:
            raise ValidationFailed(f"Unhandled event type: {type(event).__name__}")


def replay(entries: Iterable[LedgerEntry], seed: int = DEFAULT_SEED) -> KernelState:
    """Fold a sequence of ledger entries into the state they produce"""
    state = KernelState(seed=seed)
    for entry in entries:
        state = apply_event(state, entry.event)
        state.last_event_id = entry.id
    return state


def _check_seed(seed: int) -> int:
    if not 0 <= seed <= UINT32_MAX:
        raise ValueError(f"seed must be a uint32, got {seed}")
    return seed


# ============================================================================
# Kernel
# ============================================================================


class WarStackKernel:
    """
    Deterministic orchestration kernel

    Owns its ledger, its recovery policy and (unless one is shared in) its
    notification bus. Given the same seed, clock and event sequence, two
    kernels produce identical states and identical ledger hashes.
    """

    def __init__(
        self,
        seed: int = DEFAULT_SEED,
        *,
        mode: WarStackMode | str = WarStackMode.IDLE,
        digest: Digest | None = None,
        time_provider: TimeProvider | None = None,
        recovery: RecoveryPolicy | None = None,
        bus: EventBus | None = None,
    ) -> None:
        """
        Args:
            seed: Initial uint32 seed, recorded as the INIT entry
            mode: Initial mode; anything but IDLE is recorded as a
                  MODE_SWITCH entry right after INIT
            digest: Ledger hash function (defaults to SHA-256)
            time_provider: Clock for ledger timestamps
            recovery: Recovery policy (defaults to 3 absorbed errors)
            bus: Notification bus (defaults to a private one)

        Raises:
            ValueError: seed outside uint32 or unknown mode
        """
        initial_mode = WarStackMode(mode)
        self._ledger = Ledger(digest=digest, time_provider=time_provider)
        self._recovery = recovery or RecoveryPolicy()
        self._bus = bus or EventBus()
        self._state = KernelState(seed=_check_seed(seed))

        self.process_event(init_event(seed))
        if initial_mode is not WarStackMode.IDLE:
            self.process_event(mode_switch_event(initial_mode))

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def recovery(self) -> RecoveryPolicy:
        return self._recovery

    @property
    def bus(self) -> EventBus:
        return self._bus

    @track_duration("process_event")
    def process_event(self, event: Any) -> LedgerEntry | None:
        """
        Validate, apply, append and verify one event

        Args:
            event: A KernelEvent or a mapping of the same shape

        Returns:
            The committed ledger entry, or None when a recoverable error was
            absorbed (state and ledger are then left untouched)

        Raises:
            RecoveryLimitExceeded: Recovery budget is spent
            LedgerIntegrityBreach: Chain failed verification after append
            InvalidEventStructure: Ledger rejected the event outright
        """
        event_type = "INVALID"
        try:
            try:
                parsed = parse_event(event)
                # Hashing needs the canonical form, so it must exist before append
                canonical_json(event_to_dict(parsed))
            except ValidationError as e:
                raise ValidationFailed(f"Invalid event: {_first_error(e)}", cause=e) from e
            except (PydanticSerializationError, TypeError, ValueError) as e:
                raise ValidationFailed(f"Event is not serializable: {e}", cause=e) from e
            event_type = parsed.type

            next_state = apply_event(self._state, parsed)
            entry = self._ledger.append(parsed)
            next_state.last_event_id = entry.id
            self._state = next_state

            if not self._ledger.verify():
                raise LedgerIntegrityBreach(
                    "Ledger chain broken after append",
                    breach_index=self._ledger.find_breach(),
                )
        except RecoverableKernelError as e:
            self._recovery.recover(e)
            kernel_events_processed_total.labels(event_type=event_type, status="recovered").inc()
            return None

        kernel_events_processed_total.labels(event_type=event_type, status="committed").inc()
        kernel_cognitive_load.set(self._state.cognitive_load)
        self._bus.publish(LEDGER_APPENDED, entry)
        return entry

    def get_state(self) -> KernelState:
        """
        Validated copy of the current state

        Raises:
            InvalidState: The live state no longer satisfies its constraints
        """
        try:
            return KernelState.model_validate(self._state.model_dump())
        except ValidationError as e:
            logger.error("Kernel state corrupted", error=str(e))
            raise InvalidState("Internal state corrupted", cause=e) from e

    def get_ledger_entries(self) -> list[LedgerEntry]:
        return self._ledger.get_entries()

    def verify(self) -> bool:
        return self._ledger.verify()

    def reset(self, new_seed: int | None = None) -> None:
        """
        Start over with a fresh chain

        State becomes IDLE with zero load, the recovery counter is cleared,
        and a new INIT entry is appended.
        """
        seed = _check_seed(new_seed if new_seed is not None else DEFAULT_SEED)
        self._ledger.reset()
        self._recovery.reset()
        self._state = KernelState(seed=seed)
        self.process_event(init_event(seed))
        logger.info("Kernel reset", seed=seed)
        self._bus.publish(KERNEL_RESET, {"seed": seed})

    def restore(self, entries: Iterable[LedgerEntry | dict[str, Any]]) -> KernelState:
        """
        Adopt a persisted chain and re-derive the state from it

        Raises:
            LedgerIntegrityBreach: The chain does not verify
            InvalidEventStructure: An entry is malformed
        """
        self._ledger.load(entries)
        self._state = replay(self._ledger.get_entries())
        kernel_cognitive_load.set(self._state.cognitive_load)
        logger.info(
            "Kernel restored",
            entries=len(self._ledger),
            mode=self._state.mode.value,
            seed=self._state.seed,
        )
        return self.get_state()

    def subscribe(self, topic: str, handler: Handler) -> Unsubscribe:
        return self._bus.subscribe(topic, handler)


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
