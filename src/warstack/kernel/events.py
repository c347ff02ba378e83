"""
Kernel events - the tagged union every state change is expressed in

Four event kinds drive the kernel: INIT, MODE_SWITCH, COMMAND and LOG. They
are frozen pydantic models discriminated on the "type" field, so a raw
mapping either parses into exactly one variant or fails validation.

Fun fact: In event sourcing, the event log is like a time machine -
replay the same events in the same order and you land in the same state.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from warstack.kernel.rng import UINT32_MAX


class WarStackMode(str, Enum):
    """Coarse operational mode of the kernel"""

    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    RECOVERY = "RECOVERY"
    WAR = "WAR"
    FUSION = "FUSION"
    SCORING = "SCORING"
    INDIFFERENT = "INDIFFERENT"


class EventType(str, Enum):
    """Discriminator values of the event union"""

    INIT = "INIT"
    MODE_SWITCH = "MODE_SWITCH"
    COMMAND = "COMMAND"
    LOG = "LOG"


_FROZEN = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


# ============================================================================
# Payloads
# ============================================================================


class InitPayload(BaseModel):
    model_config = _FROZEN

    seed: int = Field(..., ge=0, le=UINT32_MAX, description="Generator seed (uint32)")


class ModeSwitchPayload(BaseModel):
    model_config = _FROZEN

    mode: WarStackMode


class CommandPayload(BaseModel):
    model_config = _FROZEN

    name: str = Field(..., min_length=1, description="Opaque command name")
    args: dict[str, Any] = Field(default_factory=dict, description="Key-value argument bag")


class LogPayload(BaseModel):
    """Informational record - never mutates seed, mode or load"""

    model_config = _FROZEN

    event_type: str = Field(..., alias="eventType", min_length=1)
    severity: str = Field(..., min_length=1)
    description: str
    metadata: dict[str, Any] | None = None


# ============================================================================
# Events
# ============================================================================


class InitEvent(BaseModel):
    model_config = _FROZEN

    type: Literal["INIT"] = "INIT"
    payload: InitPayload


class ModeSwitchEvent(BaseModel):
    model_config = _FROZEN

    type: Literal["MODE_SWITCH"] = "MODE_SWITCH"
    payload: ModeSwitchPayload


class CommandEvent(BaseModel):
    model_config = _FROZEN

    type: Literal["COMMAND"] = "COMMAND"
    payload: CommandPayload


class LogEvent(BaseModel):
    model_config = _FROZEN

    type: Literal["LOG"] = "LOG"
    payload: LogPayload


KernelEvent = Annotated[
    Union[InitEvent, ModeSwitchEvent, CommandEvent, LogEvent],
    Field(discriminator="type"),
]

_EVENT_MODELS = (InitEvent, ModeSwitchEvent, CommandEvent, LogEvent)
_event_adapter: TypeAdapter[Any] = TypeAdapter(KernelEvent)


def parse_event(raw: Any) -> KernelEvent:
    """
    Validate anything event-shaped into a KernelEvent

    Already-built event models pass through untouched; mappings are validated
    against the discriminated union.

    Raises:
        pydantic.ValidationError: Unknown tag, missing payload, bad mode, etc.
    """
    if isinstance(raw, _EVENT_MODELS):
        return raw
    return _event_adapter.validate_python(raw)


def event_to_dict(event: KernelEvent) -> dict[str, Any]:
    """Canonical JSON-ready form: camelCase aliases, None fields omitted"""
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Factories
# ============================================================================


def init_event(seed: int) -> InitEvent:
    return InitEvent(payload=InitPayload(seed=seed))


def mode_switch_event(mode: WarStackMode | str) -> ModeSwitchEvent:
    return ModeSwitchEvent(payload=ModeSwitchPayload(mode=mode))


def command_event(name: str, args: dict[str, Any] | None = None) -> CommandEvent:
    return CommandEvent(payload=CommandPayload(name=name, args=args or {}))


def log_event(
    *,
    event_type: str,
    severity: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        payload=LogPayload(
            event_type=event_type,
            severity=severity,
            description=description,
            metadata=metadata,
        )
    )
