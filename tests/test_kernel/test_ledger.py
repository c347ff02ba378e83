"""
Tests for the hash-chained ledger

Verifies the chain properties:
- First entry links to genesis, every later entry to its predecessor
- Hashes cover timestamp, event and previous hash
- Timestamps never decrease
- Tampering is detected and located
- Persisted chains are only adopted after full verification

Fun fact: Changing one historical entry invalidates every hash after it,
which is why auditors only ever need to trust the last one.
"""

from datetime import datetime, timezone

import pytest

from warstack.kernel.errors import InvalidEventStructure, LedgerIntegrityBreach
from warstack.kernel.events import command_event, event_to_dict, init_event, mode_switch_event
from warstack.kernel.hashing import canonical_json, checksum32_digest, sha256_digest
from warstack.kernel.ledger import GENESIS_HASH, Ledger
from warstack.kernel.time import FixedTimeProvider

T0 = 1736942400000  # 2025-01-15T12:00:00Z


def _fill(ledger: Ledger, clock: FixedTimeProvider) -> None:
    ledger.append(init_event(42))
    clock.advance_ms(10)
    ledger.append(mode_switch_event("WAR"))
    clock.advance_ms(10)
    ledger.append(command_event("scan", {"depth": 2}))


class TestAppend:
    def test_first_entry_links_to_genesis(self, ledger: Ledger) -> None:
        entry = ledger.append(init_event(42))
        assert entry.previous_hash == GENESIS_HASH
        assert entry.timestamp == T0
        assert entry.id == f"ledger-{T0}-{entry.hash[:8]}"
        assert len(entry.hash) == 64

    def test_hash_covers_canonical_document(self, ledger: Ledger) -> None:
        event = command_event("scan", {"b": 1, "a": 2})
        entry = ledger.append(event)
        expected = sha256_digest(
            canonical_json(
                {"timestamp": T0, "event": event_to_dict(event), "previousHash": GENESIS_HASH}
            )
        )
        assert entry.hash == expected

    def test_entries_chain(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        entries = ledger.get_entries()
        assert len(entries) == 3
        for previous, current in zip(entries, entries[1:]):
            assert current.previous_hash == previous.hash
        assert ledger.last_entry == entries[-1]

    def test_timestamps_clamped_when_clock_steps_back(
        self, ledger: Ledger, test_time: FixedTimeProvider
    ) -> None:
        first = ledger.append(init_event(1))
        test_time.advance_ms(-5000)
        second = ledger.append(command_event("scan"))
        assert second.timestamp == first.timestamp
        assert ledger.verify()

    def test_accepts_event_shaped_mappings(self, ledger: Ledger) -> None:
        entry = ledger.append({"type": "MODE_SWITCH", "payload": {"mode": "FUSION"}})
        assert entry.event == mode_switch_event("FUSION")

    @pytest.mark.parametrize(
        "bad",
        [None, {}, {"type": "NOPE", "payload": {}}, {"type": "INIT", "payload": "x"}],
    )
    def test_invalid_structure_is_terminal(self, ledger: Ledger, bad: object) -> None:
        with pytest.raises(InvalidEventStructure):
            ledger.append(bad)
        assert len(ledger) == 0

    def test_get_entries_returns_copy(self, ledger: Ledger) -> None:
        ledger.append(init_event(1))
        copy = ledger.get_entries()
        copy.clear()
        assert len(ledger) == 1

    def test_same_inputs_same_hashes(self) -> None:
        clock_a = FixedTimeProvider(datetime(2025, 1, 15, 12, tzinfo=timezone.utc))
        clock_b = FixedTimeProvider(datetime(2025, 1, 15, 12, tzinfo=timezone.utc))
        a, b = Ledger(time_provider=clock_a), Ledger(time_provider=clock_b)
        _fill(a, clock_a)
        _fill(b, clock_b)
        assert [e.hash for e in a.get_entries()] == [e.hash for e in b.get_entries()]

    def test_checksum_digest_chain(self, test_time: FixedTimeProvider) -> None:
        ledger = Ledger(digest=checksum32_digest, time_provider=test_time)
        _fill(ledger, test_time)
        assert ledger.verify()
        assert all(len(e.hash) == 64 for e in ledger.get_entries())


class TestVerify:
    def test_empty_ledger_verifies(self, ledger: Ledger) -> None:
        assert ledger.verify()
        assert ledger.find_breach() is None

    def test_intact_chain_verifies(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        assert ledger.verify()

    def test_tampered_event_detected(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        original = ledger._entries[1]
        ledger._entries[1] = original.model_copy(update={"event": mode_switch_event("IDLE")})
        assert not ledger.verify()
        assert ledger.find_breach() == 1

    def test_broken_link_detected(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        original = ledger._entries[2]
        ledger._entries[2] = original.model_copy(update={"previous_hash": "f" * 64})
        assert ledger.find_breach() == 2

    def test_first_entry_must_link_to_genesis(self, ledger: Ledger) -> None:
        ledger.append(init_event(1))
        ledger._entries[0] = ledger._entries[0].model_copy(update={"previous_hash": "1" * 64})
        assert not ledger.verify()
        assert ledger.find_breach() == 0

    def test_dropped_entry_detected(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        del ledger._entries[1]
        assert ledger.find_breach() == 1


class TestResetAndLoad:
    def test_reset_discards_everything(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        ledger.reset()
        assert len(ledger) == 0
        assert ledger.last_entry is None
        entry = ledger.append(init_event(7))
        assert entry.previous_hash == GENESIS_HASH

    def test_load_round_trip(self, ledger: Ledger, test_time: FixedTimeProvider) -> None:
        _fill(ledger, test_time)
        persisted = [e.to_dict() for e in ledger.get_entries()]

        restored = Ledger(time_provider=test_time)
        restored.load(persisted)
        assert restored.get_entries() == ledger.get_entries()
        assert restored.verify()

    def test_load_then_append_continues_chain(
        self, ledger: Ledger, test_time: FixedTimeProvider
    ) -> None:
        _fill(ledger, test_time)
        restored = Ledger(time_provider=test_time)
        restored.load([e.to_dict() for e in ledger.get_entries()])
        entry = restored.append(command_event("next"))
        assert entry.previous_hash == ledger.get_entries()[-1].hash
        assert restored.verify()

    def test_load_rejects_tampered_chain(
        self, ledger: Ledger, test_time: FixedTimeProvider
    ) -> None:
        _fill(ledger, test_time)
        persisted = [e.to_dict() for e in ledger.get_entries()]
        persisted[1]["event"]["payload"]["mode"] = "IDLE"

        target = Ledger(time_provider=test_time)
        target.append(init_event(99))
        with pytest.raises(LedgerIntegrityBreach) as exc_info:
            target.load(persisted)
        assert exc_info.value.breach_index == 1
        # Current chain is untouched
        assert len(target) == 1
        assert target.verify()

    def test_load_rejects_malformed_entries(self, ledger: Ledger) -> None:
        with pytest.raises(InvalidEventStructure):
            ledger.load([{"id": "short", "timestamp": 1}])
