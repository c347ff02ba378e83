"""
Persisted snapshot - everything needed to resume a session

The ledger travels as plain entry dicts; the kernel re-verifies the chain on
restore, so a snapshot that parses is not automatically trusted. Session
payloads (messages, phases, mappings) are opaque to the kernel.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from warstack.kernel.errors import SnapshotError
from warstack.kernel.logging import get_logger
from warstack.kernel.storage import KeyValueStore

logger = get_logger(__name__)


class PersistedSnapshot(BaseModel):
    """Serialized session state, stored as camelCase JSON"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ledger: list[dict[str, Any]] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    phases: list[dict[str, Any]] = Field(default_factory=list)
    mappings: list[dict[str, Any]] = Field(default_factory=list)
    selected_mapping_id: str | None = None
    verification_results: dict[str, Any] | None = None
    last_tick: int = Field(default=0, ge=0, description="Epoch ms of the last kernel activity")
    kernel_version: str
    rng_seed: int = Field(..., ge=0, description="Raw state of the shared RNG")
    id_counter: int = Field(default=0, ge=0, description="Ids minted so far by the id factory")
    last_saved: str = Field(..., description="ISO timestamp of this save")
    unsaved_changes: bool = False
    retry_count: int = Field(default=0, ge=0)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def save_snapshot(store: KeyValueStore, key: str, snapshot: PersistedSnapshot) -> None:
    store.set(key, snapshot.to_json())
    logger.debug("Snapshot written", key=key, ledger_entries=len(snapshot.ledger))


def load_snapshot(store: KeyValueStore, key: str) -> PersistedSnapshot | None:
    """
    Read and parse a snapshot

    Returns:
        None when nothing is stored under key

    Raises:
        SnapshotError: Stored content is not a valid snapshot
    """
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return PersistedSnapshot.model_validate_json(raw)
    except ValidationError as e:
        logger.error("Snapshot unreadable", key=key, errors=e.error_count())
        raise SnapshotError(key, e) from e
