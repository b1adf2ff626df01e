from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("lofistream.config")


class LofiSettings(BaseModel):
    """Genre profile knobs shared by derivation, synthesis and metadata."""

    bpm_range: tuple[float, float] = (70.0, 90.0)
    swing_amount: float = Field(default=0.65, ge=0.0, le=1.0)
    vinyl_crackle: bool = True
    jazz_chords: bool = True
    reverb_amount: float = Field(default=0.6, ge=0.0, le=1.0)
    lowpass_filter: float = Field(default=0.35, ge=0.0, le=1.0)
    humanization: bool = True
    extended_chords: bool = True
    vinyl_pops: bool = True
    background_noise: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_bpm_range(self) -> "LofiSettings":
        low, high = self.bpm_range
        if low <= 0 or high < low:
            raise ValueError(f"bpm_range must be positive and ordered, got {self.bpm_range}")
        return self


class DerivationSettings(BaseModel):
    genre_tag: str = "lofi"
    time_bucket_seconds: float = Field(default=20.0, gt=0.0)
    # Average cost that maps to the top of the bpm range.
    cost_normalizer: float = Field(default=1e10, gt=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class StreamingSettings(BaseModel):
    update_interval: float = Field(default=30.0, gt=0.0)
    crossfade_seconds: float = Field(default=2.0, ge=0.0)
    fetch_count: int = Field(default=10, ge=1)
    snapshot_cost_threshold: float = Field(default=5e10, ge=0.0)
    advance_fraction: float = Field(default=0.9, gt=0.0, le=1.0)
    activity_change_threshold: float = Field(default=0.2, ge=0.0)
    evolve_configuration: bool = True
    offload_synthesis: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid")


class GeneratorIdentity(BaseModel):
    name: str = "lofistream"
    algorithm: str = "lofistream LoFi Hip Hop Engine v1.0"
    version: str = "1.0.0"
    creator: str = "lofistream LoFi Generator"
    collection_name: str = "LoFi Chain Vibes"
    external_base_url: str | None = None
    animation_base_url: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class EngineConfig(BaseModel):
    lofi: LofiSettings = LofiSettings()
    derivation: DerivationSettings = DerivationSettings()
    streaming: StreamingSettings = StreamingSettings()
    identity: GeneratorIdentity = GeneratorIdentity()

    model_config = ConfigDict(frozen=True, extra="forbid")


def merge_settings(base: LofiSettings, **changes: Any) -> LofiSettings:
    """Return a validated copy of ``base`` with ``changes`` applied."""

    payload = base.model_dump()
    payload.update(changes)
    try:
        return LofiSettings.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Rejected settings update: %s", exc, exc_info=True)
        raise InvalidConfigError(str(exc)) from exc


def parse_config(payload: Mapping[str, Any]) -> EngineConfig:
    """Parse a config payload, raising InvalidConfigError on failure."""

    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse config payload: %s", exc, exc_info=True)
        raise InvalidConfigError(str(exc)) from exc


def load_config(path: str | Path) -> EngineConfig:
    target = Path(path)
    try:
        raw = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidConfigError(f"Could not read config {target}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise InvalidConfigError(f"Config {target} must contain a JSON object")
    return parse_config(raw)
