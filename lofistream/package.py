"""Wrap rendered samples into a publishable GeneratedTrack."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from .audio import SAMPLE_RATE, encode_wav
from .config import DerivationSettings, EngineConfig, GeneratorIdentity, LofiSettings
from .derive import derive
from .entropy import EntropySource, SystemEntropy
from .errors import EmptyArtifactError, InvalidInputError
from .models import (
    GeneratedTrack,
    Int16Array,
    MusicParameters,
    Provenance,
    SourceEvent,
    TrackAttribute,
    TrackMetadata,
)
from .patterns import BACKGROUND_COLORS
from .synth import MAX_DURATION_SECONDS, synthesize

_LOGGER = logging.getLogger("lofistream.package")

GENRE_LABEL = "LoFi Hip Hop"


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def network_activity(event_count: int) -> str:
    if event_count > 10:
        return "High"
    if event_count > 5:
        return "Medium"
    return "Low"


def build_metadata(
    events: Sequence[SourceEvent],
    params: MusicParameters,
    duration: float,
    settings: LofiSettings,
    identity: GeneratorIdentity,
) -> TrackMetadata:
    primary = events[0]
    generated_at = datetime.fromtimestamp(primary.timestamp, tz=timezone.utc)
    numerator, denominator = params.time_signature
    attributes = (
        TrackAttribute(trait_type="Genre", value=GENRE_LABEL),
        TrackAttribute(trait_type="Block Number", value=primary.sequence),
        TrackAttribute(trait_type="Event Count", value=len(events)),
        TrackAttribute(trait_type="BPM", value=round(params.tempo)),
        TrackAttribute(trait_type="Key", value=params.key),
        TrackAttribute(trait_type="Scale", value=params.scale),
        TrackAttribute(trait_type="Time Signature", value=f"{numerator}/{denominator}"),
        TrackAttribute(trait_type="Duration", value=f"{duration:.1f}s"),
        TrackAttribute(trait_type="Swing", value=f"{params.swing * 100:.1f}%"),
        TrackAttribute(trait_type="Vinyl Crackle", value=_yes_no(settings.vinyl_crackle)),
        TrackAttribute(trait_type="Jazz Chords", value=_yes_no(settings.jazz_chords)),
        TrackAttribute(trait_type="Extended Chords", value=_yes_no(settings.extended_chords)),
        TrackAttribute(trait_type="Network Activity", value=network_activity(len(events))),
        TrackAttribute(trait_type="Generation Date", value=generated_at.isoformat()),
        TrackAttribute(trait_type="Data Hash", value=primary.content_hash[:16]),
    )
    color_index = params.melody_pattern[0] if params.melody_pattern else 0
    external_url = (
        f"{identity.external_base_url.rstrip('/')}/{primary.content_hash}"
        if identity.external_base_url
        else None
    )
    animation_url = (
        f"{identity.animation_base_url.rstrip('/')}/{params.seed}"
        if identity.animation_base_url
        else None
    )
    return TrackMetadata(
        name=f"{identity.collection_name} #{primary.sequence}",
        description=(
            f"Chill {GENRE_LABEL} track generated from block {primary.sequence} "
            f"with {len(events)} events. BPM: {round(params.tempo)}, "
            f"Key: {params.key} {params.scale}."
        ),
        attributes=attributes,
        background_color=BACKGROUND_COLORS[color_index % len(BACKGROUND_COLORS)],
        animation_url=animation_url,
        external_url=external_url,
    )


def track_id(content_hash: str, seed: str, created_at: float) -> str:
    created_ms = int(created_at * 1000)
    digest = hashlib.sha256(f"lofi_{content_hash}-{seed}-{created_ms}".encode("utf-8"))
    return digest.hexdigest()[:16]


def package(
    events: Sequence[SourceEvent],
    params: MusicParameters,
    samples: Int16Array,
    *,
    settings: LofiSettings | None = None,
    identity: GeneratorIdentity | None = None,
    now: float,
) -> GeneratedTrack:
    """Encode ``samples`` and attach metadata and provenance.

    Raises EmptyArtifactError for a zero-length buffer.
    """
    if not events:
        raise InvalidInputError("package() needs the source events the track came from")
    if samples.size == 0 or samples.shape[0] == 0:
        raise EmptyArtifactError(f"Track {params.seed} has no samples")

    settings = settings or LofiSettings()
    identity = identity or GeneratorIdentity()
    primary = events[0]
    duration = samples.shape[0] / SAMPLE_RATE

    return GeneratedTrack(
        id=track_id(primary.content_hash, params.seed, now),
        created_at=now,
        source_event=primary,
        event_count=len(events),
        parameters=params,
        samples=samples,
        wav=encode_wav(samples),
        duration=duration,
        metadata=build_metadata(events, params, duration, settings, identity),
        provenance=Provenance(
            source_hash=primary.content_hash,
            algorithm=identity.algorithm,
            version=identity.version,
            creator=identity.creator,
        ),
    )


class TrackGenerator:
    """derive -> synthesize -> package, bound to one settings snapshot."""

    def __init__(
        self,
        settings: LofiSettings | None = None,
        *,
        derivation: DerivationSettings | None = None,
        identity: GeneratorIdentity | None = None,
        entropy: EntropySource | None = None,
        max_duration: float = MAX_DURATION_SECONDS,
    ) -> None:
        self._settings = settings or LofiSettings()
        self._derivation = derivation or DerivationSettings()
        self._identity = identity or GeneratorIdentity()
        self._entropy = entropy or SystemEntropy()
        self._max_duration = max_duration

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        entropy: EntropySource | None = None,
        max_duration: float = MAX_DURATION_SECONDS,
    ) -> "TrackGenerator":
        return cls(
            config.lofi,
            derivation=config.derivation,
            identity=config.identity,
            entropy=entropy,
            max_duration=max_duration,
        )

    @property
    def settings(self) -> LofiSettings:
        return self._settings

    @property
    def derivation(self) -> DerivationSettings:
        return self._derivation

    def with_settings(self, settings: LofiSettings) -> "TrackGenerator":
        return TrackGenerator(
            settings,
            derivation=self._derivation,
            identity=self._identity,
            entropy=self._entropy,
            max_duration=self._max_duration,
        )

    def generate(
        self, events: Sequence[SourceEvent], *, time_bucket: int | None = None
    ) -> GeneratedTrack:
        settings = self._settings
        params = derive(
            events,
            settings=settings,
            derivation=self._derivation,
            entropy=self._entropy,
            time_bucket=time_bucket,
        )
        samples = synthesize(params, settings=settings, max_duration=self._max_duration)
        track = package(
            events,
            params,
            samples,
            settings=settings,
            identity=self._identity,
            now=self._entropy.now(),
        )
        _LOGGER.info(
            "Generated track %s (%s %s, %.0f bpm, %.1fs)",
            track.id,
            params.key,
            params.scale,
            params.tempo,
            track.duration,
        )
        return track
