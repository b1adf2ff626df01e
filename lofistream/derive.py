"""Source events -> MusicParameters."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import TypeVar

from .config import DerivationSettings, LofiSettings
from .entropy import EntropySource, SystemEntropy, random_suffix, stable_hash
from .entropy import time_bucket as bucket_for
from .errors import InvalidInputError
from .models import MusicParameters, SourceEvent
from .patterns import (
    BASS_PATTERNS,
    CHORD_PROGRESSIONS,
    HIHAT_PATTERNS,
    JAZZ_KEYS,
    JAZZ_SCALES,
    KICK_PATTERNS,
    MELODY_PATTERNS,
    NOTE_DURATIONS,
    SNARE_PATTERNS,
)

_LOGGER = logging.getLogger("lofistream.derive")

T = TypeVar("T")

OCTAVE_RANGE = (1, 3)
SECTION_BARS = (4, 8, 8, 4)
DISTORTION = 0.1


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population std / mean, clamped to [0, 1]; 0 for degenerate input."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    if mean <= 0:
        return 0.0
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return min(math.sqrt(variance) / mean, 1.0)


def batch_activity(events: Sequence[SourceEvent]) -> tuple[float, int]:
    """Average cost and event count of a batch."""
    if not events:
        return 0.0, 0
    return sum(event.cost for event in events) / len(events), len(events)


def _validate(events: Sequence[SourceEvent]) -> list[SourceEvent]:
    if not events:
        raise InvalidInputError("derive() needs at least one source event")
    batch = list(events)
    for index, event in enumerate(batch):
        if not isinstance(event, SourceEvent):
            raise InvalidInputError(
                f"events[{index}] is {type(event).__name__}, expected SourceEvent"
            )
    return batch


def _pick(catalogue: Sequence[T], anchor: int, bucket: int) -> T:
    return catalogue[(anchor + bucket) % len(catalogue)]


def derive(
    events: Sequence[SourceEvent],
    *,
    settings: LofiSettings | None = None,
    derivation: DerivationSettings | None = None,
    entropy: EntropySource | None = None,
    time_bucket: int | None = None,
) -> MusicParameters:
    """Derive a full parameter set from an event batch.

    Everything except the seed's random suffix is a pure function of
    ``events`` and the time bucket. Pass ``time_bucket`` to pin the bucket;
    otherwise it comes from ``entropy.now()``.
    """
    batch = _validate(events)
    settings = settings or LofiSettings()
    derivation = derivation or DerivationSettings()
    entropy = entropy or SystemEntropy()

    primary = batch[0]
    bucket = (
        time_bucket
        if time_bucket is not None
        else bucket_for(entropy.now(), derivation.time_bucket_seconds)
    )

    avg_cost, _ = batch_activity(batch)
    influence = min(avg_cost / derivation.cost_normalizer, 1.0)
    low, high = settings.bpm_range
    tempo = _clamp(low + influence * (high - low), low, high)

    variation = coefficient_of_variation([event.cost for event in batch])
    swing = _clamp(settings.swing_amount + variation * 0.15, 0.0, 1.0)

    key = JAZZ_KEYS[stable_hash(primary.origin) % len(JAZZ_KEYS)]
    scale = JAZZ_SCALES[stable_hash(str(primary.value)) % len(JAZZ_SCALES)]

    anchor = stable_hash(primary.content_hash)
    intro, verse, chorus, outro = SECTION_BARS
    seed = (
        f"{derivation.genre_tag}_{primary.content_hash[:8]}_{bucket}_{random_suffix(entropy)}"
    )

    params = MusicParameters(
        tempo=tempo,
        time_signature=(4, 4),
        swing=swing,
        key=key,
        scale=scale,
        chord_progression=_pick(CHORD_PROGRESSIONS, anchor, bucket),
        melody_pattern=_pick(MELODY_PATTERNS, anchor, bucket),
        note_durations=NOTE_DURATIONS,
        octave_range=OCTAVE_RANGE,
        volume=_clamp(0.4 + influence * 0.2, 0.0, 1.0),
        reverb=_clamp(settings.reverb_amount + variation * 0.15, 0.0, 1.0),
        delay=_clamp(0.25 + variation * 0.15, 0.0, 1.0),
        distortion=DISTORTION,
        intro_length=intro,
        verse_length=verse,
        chorus_length=chorus,
        outro_length=outro,
        kick_pattern=_pick(KICK_PATTERNS, anchor, bucket),
        snare_pattern=_pick(SNARE_PATTERNS, anchor, bucket),
        hihat_pattern=_pick(HIHAT_PATTERNS, anchor, bucket),
        bass_pattern=_pick(BASS_PATTERNS, anchor, bucket),
        time_bucket=bucket,
        seed=seed,
    )
    _LOGGER.debug(
        "Derived %s %s at %.1f bpm from %d events (bucket %d)",
        key,
        scale,
        tempo,
        len(batch),
        bucket,
    )
    return params
