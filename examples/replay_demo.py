#!/usr/bin/env python3
"""
Ledger Replay Demonstration - Deterministic State Reconstruction

This example demonstrates the core property of the WarStack kernel: the
hash-chained ledger is the source of truth, and the kernel state can be
rebuilt from it bit for bit.

Key Concepts:
1. Every accepted event lands on the ledger, linked to its predecessor
2. Kernel state is a fold over ledger entries
3. A persisted session restores to an identical state
4. Same seed + same inputs → identical hashes (even AI retry delays)
5. Tampering with any entry is detected on restore

Scenario:
- Run a short session (mode switches, commands, a flaky AI call)
- Persist it to SQLite
- Restore into a fresh instance and compare
- Replay entry by entry
- Tamper with the stored chain and watch the restore fail

Run:
    python examples/replay_demo.py
"""

import asyncio
import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from warstack import WarStack
from warstack.kernel.errors import LedgerIntegrityBreach
from warstack.kernel.state_machine import KernelState, apply_event
from warstack.kernel.storage import SQLiteKeyValueStore
from warstack.kernel.time import FixedTimeProvider


def print_section(title: str) -> None:
    """Print section header"""
    print(f"\n{'='*70}")
    print(f"  {title}")
    print(f"{'='*70}\n")


class RemoteRateLimit(Exception):
    status = 429

    def __init__(self) -> None:
        super().__init__("429 Too Many Requests")


class FlakyModel:
    """Pretend AI endpoint: rate limited once, then answers"""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self) -> str:
        self.calls += 1
        if self.calls == 1:
            raise RemoteRateLimit()
        return "Hold the northern ridge; resupply at dawn."


async def no_wait(seconds: float) -> None:
    print(f"  (would sleep {seconds:.3f}s before retrying)")


async def run_session(stack: WarStack) -> None:
    stack.switch_mode("WAR")
    print("✓ Switched to WAR mode")

    result = stack.execute_command("analyze", {"query": "supply lines"})
    print(f"✓ {result['result']}")

    model = FlakyModel()
    reply = await stack.ai_call(model.complete)
    print(f"✓ AI replied after {model.calls} calls: {reply}")

    stack.switch_mode("FUSION")
    print("✓ Switched to FUSION mode")

    await stack.force_save()
    print("✓ Snapshot saved")


async def main() -> None:
    """Run replay demonstration"""

    print_section("Ledger Replay Demonstration - Deterministic Rebuilds")

    db_path = Path(tempfile.mkdtemp()) / "warstack.db"
    fixed_time = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    print(f"Database: {db_path}")
    print(f"Fixed time: {fixed_time.isoformat()}")

    # Phase 1: Run a session
    print_section("Phase 1: Run a Session")

    store = SQLiteKeyValueStore(db_path)
    original = WarStack(storage=store, time_provider=FixedTimeProvider(fixed_time), sleep=no_wait)
    await run_session(original)

    status = original.get_system_status()
    print(f"\n  Ledger entries: {status['ledger']['entries']}")
    print(f"  Cognitive load: {status['kernel']['cognitiveLoad']}")
    print(f"  Seed: {status['kernel']['rngSeed']}")

    # Phase 2: Restore into a fresh instance
    print_section("Phase 2: Restore from SQLite")

    restored = WarStack(storage=SQLiteKeyValueStore(db_path), time_provider=FixedTimeProvider(fixed_time))
    restored.restore()

    if restored.get_state() == original.get_state():
        print("✓✓✓ SUCCESS: Restored state is IDENTICAL")
    else:
        print("✗✗✗ FAILURE: States differ!")

    # Phase 3: Same inputs, same hashes
    print_section("Phase 3: Determinism Check")

    twin = WarStack(time_provider=FixedTimeProvider(fixed_time), sleep=no_wait)
    await run_session(twin)
    same = [r.hash for r in twin.ledger_records()] == [r.hash for r in original.ledger_records()]
    print(f"\nTwin session produced identical hashes: {same}")

    # Phase 4: Entry-by-entry replay
    print_section("Phase 4: Entry-by-Entry Replay")

    state = KernelState()
    for i, entry in enumerate(original.kernel.get_ledger_entries(), 1):
        state = apply_event(state, entry.event)
        print(
            f"{i:2}. {entry.event.type:<12} mode={state.mode.value:<7} "
            f"load={state.cognitive_load:<3} hash={entry.hash[:12]}…"
        )

    # Phase 5: Tampering
    print_section("Phase 5: Tamper Detection")

    data = json.loads(store.get("warstack.snapshot") or "{}")
    data["ledger"][1]["event"]["payload"]["mode"] = "IDLE"
    store.set("warstack.snapshot", json.dumps(data))
    print("Rewrote entry 1 (WAR → IDLE) directly in the database...")

    victim = WarStack(storage=store)
    try:
        victim.restore()
        print("✗ Tampered snapshot was accepted!")
    except LedgerIntegrityBreach as e:
        print(f"✓ Restore refused: {e}")
        print(f"  Breach at entry {e.breach_index}")

    print("\n" + "="*70)
    print("Replay demonstration complete")
    print("="*70 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
