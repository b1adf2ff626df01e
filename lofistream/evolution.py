"""Slow drift of the lofi settings over a long-running session."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from .config import DerivationSettings, LofiSettings, merge_settings
from .derive import batch_activity
from .entropy import EntropySource
from .models import SourceEvent

_LOGGER = logging.getLogger("lofistream.evolution")

BPM_SPREAD = 5.0
NUDGE = 0.1
SWING_BOUNDS = (0.2, 0.6)
REVERB_BOUNDS = (0.3, 0.8)
LOWPASS_BOUNDS = (0.2, 0.7)


class EvolutionResult(BaseModel):
    settings: LofiSettings
    bpm: float
    activity_factor: float
    session_minutes: float

    model_config = ConfigDict(frozen=True, extra="forbid")


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    return max(bounds[0], min(bounds[1], value))


def _nudge(value: float, entropy: EntropySource, bounds: tuple[float, float]) -> float:
    return _clamp(value + (entropy.random() - 0.5) * NUDGE, bounds)


def evolve_settings(
    settings: LofiSettings,
    events: Sequence[SourceEvent],
    session_minutes: float,
    entropy: EntropySource,
    derivation: DerivationSettings | None = None,
    *,
    home: LofiSettings | None = None,
) -> EvolutionResult:
    """Nudge tempo, swing, reverb and lowpass toward the current activity.

    The new centre tempo is clamped to ``home.bpm_range`` (the session's
    starting settings) so repeated evolution cannot wander off; the other
    knobs move by at most 0.05 per call.
    """
    derivation = derivation or DerivationSettings()
    low, high = (home or settings).bpm_range

    avg_cost, _ = batch_activity(events)
    activity = min(avg_cost / derivation.cost_normalizer, 1.0)
    drift = math.sin(session_minutes * 0.1) * 5
    jitter = (entropy.random() - 0.5) * 8
    bpm = max(low, min(high, low + drift + activity * 10 + jitter))

    evolved = merge_settings(
        settings,
        bpm_range=(max(bpm - BPM_SPREAD, 1.0), bpm + BPM_SPREAD),
        swing_amount=_nudge(settings.swing_amount, entropy, SWING_BOUNDS),
        reverb_amount=_nudge(settings.reverb_amount, entropy, REVERB_BOUNDS),
        lowpass_filter=_nudge(settings.lowpass_filter, entropy, LOWPASS_BOUNDS),
    )
    _LOGGER.debug(
        "Evolved settings at %.1f min: bpm %.1f, activity %.2f",
        session_minutes,
        bpm,
        activity,
    )
    return EvolutionResult(
        settings=evolved,
        bpm=bpm,
        activity_factor=activity,
        session_minutes=session_minutes,
    )
