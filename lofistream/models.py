from __future__ import annotations

import hashlib
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, field_validator

Int16Array = NDArray[np.int16]


def content_hash_for(
    *,
    sequence: int,
    parent_hash: str,
    timestamp: int,
    origin: str,
    destination: str,
    value: int,
) -> str:
    data = f"{parent_hash}-{origin}-{destination}-{value}-{timestamp}-{sequence}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class SourceEvent(BaseModel):
    """One observed record from the upstream time-series source."""

    sequence: int = Field(ge=0)
    parent_hash: str
    timestamp: int
    cost: float = Field(ge=0.0)
    flow: float = Field(default=0.0, ge=0.0)
    origin: str
    destination: str
    value: int = Field(default=0, ge=0)
    payload: bytes | None = None
    content_hash: str = Field(min_length=8)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def create(
        cls,
        *,
        sequence: int,
        parent_hash: str,
        timestamp: int,
        cost: float,
        origin: str,
        destination: str,
        flow: float = 0.0,
        value: int = 0,
        payload: bytes | None = None,
    ) -> "SourceEvent":
        """Build an event and derive its content hash."""
        return cls(
            sequence=sequence,
            parent_hash=parent_hash,
            timestamp=timestamp,
            cost=cost,
            flow=flow,
            origin=origin,
            destination=destination,
            value=value,
            payload=payload,
            content_hash=content_hash_for(
                sequence=sequence,
                parent_hash=parent_hash,
                timestamp=timestamp,
                origin=origin,
                destination=destination,
                value=value,
            ),
        )


class MusicParameters(BaseModel):
    """Complete, immutable description of one track."""

    tempo: float = Field(gt=0.0)
    time_signature: tuple[int, int] = (4, 4)
    swing: float = Field(ge=0.0, le=1.0)
    key: str
    scale: str
    chord_progression: tuple[str, ...]
    melody_pattern: tuple[int, ...]
    note_durations: tuple[float, ...]
    octave_range: tuple[int, int] = (1, 3)
    volume: float = Field(ge=0.0, le=1.0)
    reverb: float = Field(ge=0.0, le=1.0)
    delay: float = Field(ge=0.0, le=1.0)
    distortion: float = Field(ge=0.0, le=1.0)
    intro_length: int = Field(default=4, ge=0)
    verse_length: int = Field(default=8, ge=0)
    chorus_length: int = Field(default=8, ge=0)
    outro_length: int = Field(default=4, ge=0)
    kick_pattern: tuple[int, ...] = ()
    snare_pattern: tuple[int, ...] = ()
    hihat_pattern: tuple[int, ...] = ()
    bass_pattern: tuple[float, ...] = ()
    time_bucket: int = 0
    seed: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("time_signature")
    @classmethod
    def _validate_time_signature(cls, value: tuple[int, int]) -> tuple[int, int]:
        if value[0] <= 0 or value[1] <= 0:
            raise ValueError("time_signature entries must be positive")
        return value

    @property
    def total_bars(self) -> int:
        return self.intro_length + self.verse_length + self.chorus_length + self.outro_length

    @property
    def requested_duration(self) -> float:
        """Structural length in seconds before any cap is applied."""
        return self.total_bars * (60.0 / self.tempo) * self.time_signature[0]


class TrackAttribute(BaseModel):
    trait_type: str
    value: str | int | float

    model_config = ConfigDict(frozen=True, extra="forbid")


class TrackMetadata(BaseModel):
    name: str
    description: str
    attributes: tuple[TrackAttribute, ...]
    background_color: str
    animation_url: str | None = None
    external_url: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_json_dict(self) -> dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        payload["attributes"] = [attr.model_dump() for attr in self.attributes]
        return payload


class Provenance(BaseModel):
    source_hash: str
    algorithm: str
    version: str
    creator: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class GeneratedTrack(BaseModel):
    id: str
    created_at: float
    source_event: SourceEvent
    event_count: int = Field(ge=1)
    parameters: MusicParameters
    samples: Int16Array
    wav: bytes
    duration: float = Field(ge=0.0)
    metadata: TrackMetadata
    provenance: Provenance

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])


class SnapshotReceipt(BaseModel):
    id: str
    location_uri: str
    transaction_ref: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class CurrentTrack(BaseModel):
    music_id: str
    start_time: float
    duration: float
    source_event: SourceEvent

    model_config = ConfigDict(frozen=True, extra="forbid")


class SessionStats(BaseModel):
    total_listeners: int = 0
    average_listeners: float = 0.0
    peak_listeners: int = 0
    listener_samples: int = 0
    total_duration: float = 0.0
    tracks_played: int = 0

    model_config = ConfigDict(frozen=True, extra="forbid")


class StreamingSession(BaseModel):
    """Immutable view of a session; the manager swaps in new copies."""

    id: str
    start_time: float
    end_time: float | None = None
    is_active: bool = True
    current_track: CurrentTrack | None = None
    stats: SessionStats = SessionStats()
    snapshot_ids: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")


class StreamingStats(BaseModel):
    is_active: bool
    session_duration: float
    tracks_played: int
    snapshots_created: int
    current_listeners: int

    model_config = ConfigDict(frozen=True, extra="forbid")
