"""
WarStack configuration - determinism, persistence and resilience knobs

Every tunable of the stack lives here as a validated pydantic model, so a
bad value fails at load time instead of halfway through a session.

Fun fact: The default debounce of one second is roughly how long people
pause between bursts of typing - long enough to batch, short enough to
feel instant.
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from warstack.kernel.events import WarStackMode
from warstack.kernel.rng import UINT32_MAX

KERNEL_VERSION = "13.0.0"


class DeterminismConfig(BaseModel):
    """Controls which sources of randomness are replay-stable"""

    seed: int = Field(
        default=42,
        ge=0,
        le=UINT32_MAX,
        description="Seed for the kernel and the shared RNG",
    )

    deterministic_ids: bool = Field(
        default=True,
        description="Mint ids from the shared RNG (replay-stable) instead of OS entropy",
    )

    deterministic_backoff_jitter: bool = Field(
        default=True,
        description="Draw backoff jitter from the shared RNG instead of OS entropy",
    )


class PersistencePolicy(BaseModel):
    """When and where snapshots are written"""

    debounce_ms: int = Field(
        default=1000,
        ge=0,
        description="Quiet period before a scheduled save actually runs",
    )

    auto_persist_interval_ms: int = Field(
        default=5000,
        gt=0,
        description="Period of the background auto-persist loop",
    )

    storage_key: str = Field(
        default="warstack.snapshot",
        min_length=1,
        description="Key under which the snapshot is stored",
    )


class ResiliencePolicy(BaseModel):
    """
    Exponential backoff parameters for unreliable remote calls

    Immutable once built; a wrapper never sees its policy change mid-retry.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=4, ge=1, description="Total attempts including the first")
    base_delay_ms: int = Field(default=400, ge=0, description="Delay before the first retry")
    max_delay_ms: int = Field(default=8000, ge=0, description="Cap for the exponential part")
    jitter_ratio: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Max jitter as a fraction of the backoff",
    )

    @model_validator(mode="after")
    def _check_delays(self) -> "ResiliencePolicy":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})"
            )
        return self


class WarStackConfig(BaseModel):
    """Top-level configuration of a WarStack instance"""

    kernel_version: str = Field(default=KERNEL_VERSION)
    determinism: DeterminismConfig = Field(default_factory=DeterminismConfig)
    persistence: PersistencePolicy = Field(default_factory=PersistencePolicy)
    resilience: ResiliencePolicy = Field(default_factory=ResiliencePolicy)
    digest: Literal["sha256", "checksum32"] = Field(
        default="sha256",
        description="Hash function for ledger links",
    )
    initial_mode: WarStackMode = Field(default=WarStackMode.IDLE)
    id_prefix: str = Field(default="wk", min_length=1, max_length=16)

    @classmethod
    def from_file(cls, path: str | Path) -> "WarStackConfig":
        """
        Load configuration from a JSON file

        Raises:
            FileNotFoundError: Path does not exist
            pydantic.ValidationError: Content is not a valid configuration
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(raw)
