"""
Ledger records - the display shape of kernel ledger entries

Kernel entries are compact and hash-oriented. Dashboards and reports want
a flat row instead: an event type, a severity, a human description and the
correlation id that ties an AI call to its retries.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from warstack.kernel.events import CommandEvent, InitEvent, LogEvent, ModeSwitchEvent
from warstack.kernel.ledger import LedgerEntry
from warstack.kernel.time import epoch_ms_to_iso

DEFAULT_CORRELATION_ID = "kernel"
CORRELATION_METADATA_KEY = "correlationId"


class LedgerEventType(str, Enum):
    INTENT_CAPTURE = "INTENT_CAPTURE"
    AI_INVOCATION = "AI_INVOCATION"
    AI_RETRY = "AI_RETRY"
    AI_RESPONSE = "AI_RESPONSE"
    PHASE_START = "PHASE_START"
    PHASE_COMMIT = "PHASE_COMMIT"
    PHASE_BREACH = "PHASE_BREACH"
    STATE_PERSISTED = "STATE_PERSISTED"
    CONTEXT_SHIFT = "CONTEXT_SHIFT"
    RUNTIME_IDENTIFIED = "RUNTIME_IDENTIFIED"
    MANIFEST_PINNED = "MANIFEST_PINNED"
    REPORT_GENERATED = "REPORT_GENERATED"
    BLUEPRINT_COMMIT = "BLUEPRINT_COMMIT"
    BLUEPRINT_PURGE = "BLUEPRINT_PURGE"
    BOOT_INIT = "BOOT_INIT"
    COMMAND_EXECUTED = "COMMAND_EXECUTED"
    ERROR = "ERROR"


class LedgerSeverity(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


class LedgerRecord(BaseModel):
    """One ledger entry, flattened for display"""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    timestamp_iso: str = Field(..., alias="timestampISO")
    event_type: str
    severity: str
    description: str
    correlation_id: str
    hash: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def to_record(entry: LedgerEntry) -> LedgerRecord:
    """Flatten a kernel ledger entry"""
    event = entry.event
    severity = LedgerSeverity.INFO.value
    metadata: dict[str, Any] = {}

    match event:
        case LogEvent():
            event_type = event.payload.event_type
            severity = event.payload.severity
            description = event.payload.description
            metadata = dict(event.payload.metadata or {})
        case CommandEvent():
            event_type = LedgerEventType.COMMAND_EXECUTED.value
            description = f"Command: {event.payload.name}"
            metadata = dict(event.payload.args)
        case ModeSwitchEvent():
            event_type = LedgerEventType.CONTEXT_SHIFT.value
            description = f"Mode switched to {event.payload.mode.value}"
        case InitEvent():
            event_type = LedgerEventType.BOOT_INIT.value
            description = f"Kernel initialized (seed: {event.payload.seed})"

    correlation_id = metadata.get(CORRELATION_METADATA_KEY)
    return LedgerRecord(
        id=entry.id,
        timestamp_iso=epoch_ms_to_iso(entry.timestamp),
        event_type=event_type,
        severity=severity,
        description=description,
        correlation_id=correlation_id if isinstance(correlation_id, str) else DEFAULT_CORRELATION_ID,
        hash=entry.hash,
        metadata=metadata,
    )
