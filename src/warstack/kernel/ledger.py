"""
Hash-chained ledger - append-only audit log of kernel events

Every entry commits to its predecessor's hash, so rewriting any historical
entry breaks every link after it. The ledger is the source of truth for the
kernel: state can always be re-derived by folding the entries in order.

Guarantees:
- Append-only semantics (entries are frozen and never modified in place)
- Each entry links to the previous hash, the first one to GENESIS_HASH
- Timestamps never decrease along the chain
- verify() never raises; it answers yes or no

Fun fact: Hash chains predate blockchains by decades - Haber and Stornetta
used them in 1991 to timestamp digital documents so nobody could backdate them.
"""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from warstack.kernel.errors import InvalidEventStructure, LedgerIntegrityBreach
from warstack.kernel.events import KernelEvent, event_to_dict, parse_event
from warstack.kernel.hashing import HEX_DIGEST_LENGTH, Digest, canonical_json, sha256_digest
from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import (
    ledger_entries_appended_total,
    ledger_length,
    ledger_resets_total,
    ledger_verifications_total,
)
from warstack.kernel.time import TimeProvider, default_time_provider, to_epoch_ms

logger = get_logger(__name__)

GENESIS_HASH = "0" * HEX_DIGEST_LENGTH


class LedgerEntry(BaseModel):
    """A single committed link of the chain"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=8)
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds")
    event: KernelEvent
    previous_hash: str = Field(
        ..., alias="previousHash", min_length=HEX_DIGEST_LENGTH, max_length=HEX_DIGEST_LENGTH
    )
    hash: str = Field(..., min_length=HEX_DIGEST_LENGTH, max_length=HEX_DIGEST_LENGTH)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form with camelCase keys, as persisted in snapshots"""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "event": event_to_dict(self.event),
            "previousHash": self.previous_hash,
            "hash": self.hash,
        }


def compute_entry_hash(
    digest: Digest, timestamp: int, event: KernelEvent, previous_hash: str
) -> str:
    """Digest of the canonical {timestamp, event, previousHash} document"""
    document = {
        "timestamp": timestamp,
        "event": event_to_dict(event),
        "previousHash": previous_hash,
    }
    return digest(canonical_json(document))


class Ledger:
    """
    In-memory hash-chained ledger

    The digest and the clock are injected so that a replay with a fixed
    clock reproduces the exact same hashes.
    """

    def __init__(
        self,
        digest: Digest | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        """
        Args:
            digest: Hash function for chain links (defaults to SHA-256)
            time_provider: Clock for entry timestamps (defaults to system UTC)
        """
        self._digest = digest or sha256_digest
        self._time = time_provider or default_time_provider
        self._entries: list[LedgerEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_entry(self) -> LedgerEntry | None:
        return self._entries[-1] if self._entries else None

    def append(self, event: Any) -> LedgerEntry:
        """
        Append an event as a new chain link

        The entry is fully built before it becomes visible, so a failure
        part-way through leaves the chain untouched.

        Args:
            event: A KernelEvent (or a mapping of the same shape)

        Returns:
            The committed entry

        Raises:
            InvalidEventStructure: Event is not a well-formed KernelEvent
        """
        try:
            parsed = parse_event(event)
        except ValidationError as e:
            raise InvalidEventStructure(cause=e) from e

        tail = self.last_entry
        previous_hash = tail.hash if tail else GENESIS_HASH

        timestamp = to_epoch_ms(self._time.now())
        if tail is not None and timestamp < tail.timestamp:
            # Clock stepped backwards; keep the chain monotonic
            timestamp = tail.timestamp

        entry_hash = compute_entry_hash(self._digest, timestamp, parsed, previous_hash)
        entry = LedgerEntry(
            id=f"ledger-{timestamp}-{entry_hash[:8]}",
            timestamp=timestamp,
            event=parsed,
            previous_hash=previous_hash,
            hash=entry_hash,
        )

        self._entries.append(entry)
        ledger_entries_appended_total.labels(event_type=parsed.type).inc()
        ledger_length.set(len(self._entries))
        return entry

    def find_breach(self) -> int | None:
        """
        Index of the first entry that fails a link, hash, or ordering check

        Returns:
            None when the whole chain is consistent
        """
        return _find_breach(self._entries, self._digest)

    def verify(self) -> bool:
        """True when every entry links to its predecessor and re-hashes to itself"""
        breach = self.find_breach()
        ledger_verifications_total.labels(result="valid" if breach is None else "broken").inc()
        if breach is not None:
            logger.warning("Ledger chain verification failed", breach_index=breach)
        return breach is None

    def get_entries(self) -> list[LedgerEntry]:
        """Independent copy of the entries in insertion order"""
        return list(self._entries)

    def reset(self) -> None:
        """Discard every entry (whole-ledger replacement)"""
        self._entries = []
        ledger_resets_total.inc()
        ledger_length.set(0)

    def load(self, entries: Iterable[LedgerEntry | dict[str, Any]]) -> None:
        """
        Adopt a previously persisted chain

        The candidate chain is validated in full before it replaces the
        current one; on any failure the current chain is left as it was.

        Raises:
            InvalidEventStructure: An entry is malformed
            LedgerIntegrityBreach: The chain does not verify
        """
        try:
            candidate = [
                e if isinstance(e, LedgerEntry) else LedgerEntry.model_validate(e)
                for e in entries
            ]
        except ValidationError as e:
            raise InvalidEventStructure("Persisted ledger entry is malformed", cause=e) from e

        breach = _find_breach(candidate, self._digest)
        if breach is not None:
            raise LedgerIntegrityBreach(
                f"Persisted ledger chain is broken at entry {breach}",
                breach_index=breach,
            )

        self._entries = candidate
        ledger_resets_total.inc()
        ledger_length.set(len(candidate))
        logger.info("Ledger loaded", entries=len(candidate))


def _find_breach(entries: list[LedgerEntry], digest: Digest) -> int | None:
    previous: LedgerEntry | None = None
    for index, entry in enumerate(entries):
        expected_previous = previous.hash if previous else GENESIS_HASH
        if entry.previous_hash != expected_previous:
            return index
        if previous is not None and entry.timestamp < previous.timestamp:
            return index
        recomputed = compute_entry_hash(
            digest, entry.timestamp, entry.event, entry.previous_hash
        )
        if entry.hash != recomputed:
            return index
        previous = entry
    return None
