"""
WarStack - Main façade class

This is the primary interface for driving a WarStack session. It composes
the deterministic kernel, the shared RNG, the id factory, the resilience
wrapper, the persistence scheduler and the snapshot store behind a small
API, so callers never touch the ledger mechanics directly.

Example:
    >>> from warstack import WarStack
    >>> stack = WarStack()
    >>> stack.switch_mode("WAR")
    >>> stack.execute_command("analyze", {"query": "supply lines"})
    >>> reply = await stack.ai_call(lambda: client.complete(prompt))
    >>> await stack.force_save()
    >>> stack.verify()
    True
"""

import random
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from warstack.kernel.bus import LEDGER_APPENDED, REPORT_GENERATED, EventBus, Handler, Unsubscribe
from warstack.kernel.config import WarStackConfig
from warstack.kernel.errors import AIError
from warstack.kernel.events import WarStackMode, log_event
from warstack.kernel.hashing import Digest, get_digest
from warstack.kernel.ids import DeterministicIdFactory, IdFactory, RandomIdFactory
from warstack.kernel.logging import LogOperation, correlation_id_var, correlation_scope, get_logger
from warstack.kernel.persistence import PersistenceScheduler
from warstack.kernel.resilience import RetryMeta, Sleep, with_exponential_backoff
from warstack.kernel.rng import DeterministicRNG
from warstack.kernel.snapshot import PersistedSnapshot, load_snapshot, save_snapshot
from warstack.kernel.state_machine import KernelState, WarStackKernel
from warstack.kernel.storage import InMemoryStore, KeyValueStore
from warstack.kernel.time import RealTimeProvider, TimeProvider, utc_now_iso
from warstack.records import (
    CORRELATION_METADATA_KEY,
    DEFAULT_CORRELATION_ID,
    LedgerEventType,
    LedgerRecord,
    LedgerSeverity,
    to_record,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Opaque session fields carried in snapshots
SESSION_FIELDS = ("messages", "phases", "mappings", "selected_mapping_id", "verification_results")


class WarStack:
    """
    WarStack main façade

    Provides a unified API for:
    - Ledger logging and mode/command events
    - Resilient AI invocations with deterministic backoff
    - Debounced, forced and periodic snapshot persistence
    - Status, reports and chain verification
    """

    def __init__(
        self,
        config: WarStackConfig | None = None,
        *,
        storage: KeyValueStore | None = None,
        time_provider: TimeProvider | None = None,
        digest: Digest | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        """
        Initialize a WarStack session

        Args:
            config: Configuration (uses defaults if None)
            storage: Snapshot store (in-memory if None)
            time_provider: Clock for ledger timestamps (real time if None)
            digest: Ledger hash function (overrides config.digest)
            sleep: Awaitable sleep used between AI retries (asyncio.sleep if None)
        """
        self.config = config or WarStackConfig()
        self.storage: KeyValueStore = storage or InMemoryStore()
        self.time_provider = time_provider or RealTimeProvider()
        self.bus = EventBus()

        determinism = self.config.determinism
        self.rng = DeterministicRNG(determinism.seed)
        self.ids: IdFactory = (
            DeterministicIdFactory(self.rng, self.config.id_prefix)
            if determinism.deterministic_ids
            else RandomIdFactory(self.config.id_prefix)
        )
        self._jitter01: Callable[[], float] = (
            self.rng.next
            if determinism.deterministic_backoff_jitter
            else random.SystemRandom().random
        )
        self._sleep = sleep

        self.kernel = WarStackKernel(
            determinism.seed,
            mode=self.config.initial_mode,
            digest=digest or get_digest(self.config.digest),
            time_provider=self.time_provider,
            bus=self.bus,
        )
        self.persistence = PersistenceScheduler(self.config.persistence)

        self._session: dict[str, Any] = {
            "messages": [],
            "phases": [],
            "mappings": [],
            "selected_mapping_id": None,
            "verification_results": None,
        }
        self.unsaved_changes = False
        self.retry_count = 0
        self.last_saved: str | None = None

        self.bus.subscribe(LEDGER_APPENDED, self._mark_dirty)
        logger.info(
            "WarStack initialized",
            seed=determinism.seed,
            mode=self.config.initial_mode.value,
            digest=self.config.digest,
            kernel_version=self.config.kernel_version,
        )

    def _mark_dirty(self, _: Any) -> None:
        self.unsaved_changes = True

    # ========================================================================
    # Ledger Operations
    # ========================================================================

    def new_correlation_id(self) -> str:
        return self.ids.next_id()

    def log(
        self,
        event_type: LedgerEventType | str,
        severity: LedgerSeverity | str,
        description: str,
        *,
        correlation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerRecord | None:
        """
        Record an informational event on the ledger

        Args:
            event_type: LedgerEventType (or its string value)
            severity: LedgerSeverity (or its string value)
            description: Human-readable description
            correlation_id: Ties related records together; falls back to the
                            active correlation scope, then "kernel"
            metadata: Extra JSON-serializable details

        Returns:
            The appended record, or None if the kernel absorbed the event

        Raises:
            ValueError: Unknown event type or severity
        """
        cid = correlation_id or correlation_id_var.get() or DEFAULT_CORRELATION_ID
        event = log_event(
            event_type=LedgerEventType(event_type).value,
            severity=LedgerSeverity(severity).value,
            description=description,
            metadata={**(metadata or {}), CORRELATION_METADATA_KEY: cid},
        )
        entry = self.kernel.process_event(event)
        return to_record(entry) if entry else None

    def switch_mode(self, mode: WarStackMode | str) -> LedgerRecord | None:
        """Switch the kernel mode; an unknown mode is absorbed as a recoverable error"""
        value = mode.value if isinstance(mode, WarStackMode) else mode
        entry = self.kernel.process_event({"type": "MODE_SWITCH", "payload": {"mode": value}})
        return to_record(entry) if entry else None

    def execute_command(self, name: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Run a named command through the kernel

        Returns:
            Result dict with the committed entry id and the new seed
        """
        args = args or {}
        entry = self.kernel.process_event(
            {"type": "COMMAND", "payload": {"name": name, "args": args}}
        )
        if name == "analyze":
            result = f"Analyzed: {args.get('query', 'data')}. Deterministic output confirmed."
        else:
            result = "Command executed"
        return {
            "result": result,
            "accepted": entry is not None,
            "entryId": entry.id if entry else None,
            "seed": self.kernel.get_state().seed,
        }

    def ledger_records(self) -> list[LedgerRecord]:
        return [to_record(e) for e in self.kernel.get_ledger_entries()]

    def verify(self) -> bool:
        return self.kernel.verify()

    def get_state(self) -> KernelState:
        return self.kernel.get_state()

    def reset(self, new_seed: int | None = None) -> None:
        """Start a fresh chain; AI retry counter goes back to zero"""
        self.kernel.reset(new_seed)
        self.retry_count = 0

    def subscribe(self, topic: str, handler: Handler) -> Unsubscribe:
        return self.bus.subscribe(topic, handler)

    # ========================================================================
    # AI Invocation
    # ========================================================================

    async def ai_call(
        self,
        invoke: Callable[[], Awaitable[T]],
        *,
        correlation_id: str | None = None,
        mapping_id: str | None = None,
    ) -> T:
        """
        Invoke an AI operation with ledgered retries

        Records AI_INVOCATION up front, AI_RETRY (WARN) before every retry,
        and either AI_RESPONSE (SUCCESS) or PHASE_BREACH (CRITICAL).

        Args:
            invoke: Zero-argument coroutine function performing the call
            correlation_id: Defaults to a fresh id from the id factory
            mapping_id: Optional mapping the call belongs to

        Returns:
            Whatever invoke returns

        Raises:
            AIError: The classified final failure
        """
        cid = correlation_id or self.new_correlation_id()
        extra: dict[str, Any] = {"mappingId": mapping_id} if mapping_id else {}

        def on_retry(meta: RetryMeta, error: AIError) -> None:
            self.retry_count += 1
            self.log(
                LedgerEventType.AI_RETRY,
                LedgerSeverity.WARN,
                f"Retry attempt {meta.attempt} | Category: {error.category.value}",
                correlation_id=cid,
                metadata={
                    "errorCategory": error.category.value,
                    "delayMs": meta.total_delay_ms,
                    **extra,
                },
            )

        def on_fail(error: AIError) -> None:
            self.log(
                LedgerEventType.PHASE_BREACH,
                LedgerSeverity.CRITICAL,
                f"AI_FAILURE: [{error.category.value}] {error}",
                correlation_id=cid,
                metadata={"category": error.category.value, **extra},
            )

        with correlation_scope(cid):
            self.log(
                LedgerEventType.AI_INVOCATION,
                LedgerSeverity.INFO,
                f"Invoking AI model [{cid[:6]}]",
                correlation_id=cid,
                metadata=extra,
            )
            result = await with_exponential_backoff(
                invoke,
                policy=self.config.resilience,
                jitter01=self._jitter01,
                on_retry=on_retry,
                on_fail=on_fail,
                sleep=self._sleep,
            )
            self.log(
                LedgerEventType.AI_RESPONSE,
                LedgerSeverity.SUCCESS,
                f"AI response received [{cid[:6]}]",
                correlation_id=cid,
                metadata=extra,
            )
        return result

    # ========================================================================
    # Status & Reports
    # ========================================================================

    def get_system_status(self) -> dict[str, Any]:
        state = self.kernel.get_state()
        entries = self.kernel.get_ledger_entries()
        return {
            "kernel": {
                "mode": state.mode.value,
                "cognitiveLoad": state.cognitive_load,
                "commandCount": sum(1 for e in entries if e.event.type == "COMMAND"),
                "rngSeed": state.seed,
                "lastEventId": state.last_event_id,
            },
            "ledger": {
                "entries": len(entries),
                "verified": self.kernel.verify(),
            },
            "version": self.config.kernel_version,
            "retryCount": self.retry_count,
            "unsavedChanges": self.unsaved_changes,
            "lastSaved": self.last_saved,
        }

    def generate_report(self) -> dict[str, Any]:
        """
        Summarize the session and record REPORT_GENERATED

        Subscribers of "report.generated" receive {"report": text}.
        """
        entries = self.kernel.get_ledger_entries()
        verified = self.kernel.verify()
        state = self.kernel.get_state()
        counts = Counter(e.event.type for e in entries)

        report = "\n".join(
            [
                f"WARSTACK KERNEL v{self.config.kernel_version} REPORT",
                f"Timestamp: {utc_now_iso(self.time_provider)}",
                f"Mode: {state.mode.value}",
                f"Total Events: {len(entries)}",
                f"Chain Integrity: {'VERIFIED' if verified else 'FAILED'}",
            ]
        )

        self.log(
            LedgerEventType.REPORT_GENERATED,
            LedgerSeverity.SUCCESS,
            "Kernel report generated",
        )
        self.bus.publish(REPORT_GENERATED, {"report": report})

        return {
            "report": report,
            "summary": {
                "totalEvents": len(entries),
                "chainVerified": verified,
                "mode": state.mode.value,
                "eventCounts": dict(sorted(counts.items())),
            },
        }

    # ========================================================================
    # Session & Persistence
    # ========================================================================

    @property
    def session(self) -> dict[str, Any]:
        return dict(self._session)

    def update_session(self, **fields: Any) -> None:
        """
        Replace opaque session fields carried in snapshots

        Raises:
            ValueError: Unknown field name
        """
        unknown = set(fields) - set(SESSION_FIELDS)
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        self._session.update(fields)
        self.unsaved_changes = True

    def build_snapshot(self) -> PersistedSnapshot:
        entries = self.kernel.get_ledger_entries()
        return PersistedSnapshot(
            ledger=[e.to_dict() for e in entries],
            last_tick=entries[-1].timestamp if entries else 0,
            kernel_version=self.config.kernel_version,
            rng_seed=self.rng.snapshot(),
            id_counter=self.ids.counter,
            last_saved=utc_now_iso(self.time_provider),
            unsaved_changes=False,
            retry_count=self.retry_count,
            **self._session,
        )

    async def save_now(self) -> PersistedSnapshot:
        """
        Write a snapshot immediately

        STATE_PERSISTED is recorded first so the snapshot contains its own
        save marker. A failed write is followed by a CRITICAL ERROR entry so
        the chain never claims a save that did not happen.
        """
        key = self.config.persistence.storage_key
        with LogOperation(logger, "save_snapshot", storage_key=key):
            self.log(
                LedgerEventType.STATE_PERSISTED,
                LedgerSeverity.INFO,
                "State persisted",
                metadata={"storageKey": key},
            )
            snapshot = self.build_snapshot()
            try:
                save_snapshot(self.storage, key, snapshot)
            except Exception as e:
                self.log(
                    LedgerEventType.ERROR,
                    LedgerSeverity.CRITICAL,
                    "State persist failed",
                    metadata={"storageKey": key, "error": str(e)},
                )
                raise
        self.last_saved = snapshot.last_saved
        self.unsaved_changes = False
        return snapshot

    async def _save(self) -> None:
        await self.save_now()

    async def _save_if_dirty(self) -> None:
        if self.unsaved_changes:
            await self.save_now()

    def schedule_save(self) -> None:
        """Debounced save; must be called from inside a running event loop"""
        self.persistence.schedule_save(self._save)

    async def force_save(self) -> None:
        await self.persistence.force_save(self._save)

    def start_auto_persist(self) -> None:
        """Periodic save of unsaved changes; must be called inside a running loop"""
        self.persistence.start_auto_persist(self._save_if_dirty)

    def stop_auto_persist(self) -> None:
        self.persistence.stop_auto_persist()

    async def aclose(self) -> None:
        await self.persistence.aclose()

    def restore(self) -> PersistedSnapshot | None:
        """
        Resume from the stored snapshot

        Returns:
            The snapshot that was restored, or None if nothing was stored

        Raises:
            SnapshotError: Stored content is unreadable
            LedgerIntegrityBreach: Stored chain does not verify
            InvalidEventStructure: Stored chain holds malformed entries
        """
        key = self.config.persistence.storage_key
        snapshot = load_snapshot(self.storage, key)
        if snapshot is None:
            logger.info("No snapshot to restore", storage_key=key)
            return None

        with LogOperation(logger, "restore_snapshot", storage_key=key):
            self.kernel.restore(snapshot.ledger)
            self.rng.reseed(snapshot.rng_seed)
            self.ids.resume(snapshot.id_counter)
            self._session.update(
                {name: getattr(snapshot, name) for name in SESSION_FIELDS}
            )
            self.retry_count = snapshot.retry_count
            self.last_saved = snapshot.last_saved
            self.unsaved_changes = False
        return snapshot
