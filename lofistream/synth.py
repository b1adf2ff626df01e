# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""
Architecture:

1. Primitives: pitch helpers, swing, band-limited noise
2. Voices: kick, snare, hi-hat, bass, chords, melody, vinyl texture
3. Master chain + block renderer: MusicParameters -> int16 stereo
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import TypeAlias

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.signal import butter, lfilter  # type: ignore[import]

from .config import LofiSettings
from .entropy import stable_hash
from .models import Int16Array, MusicParameters
from .patterns import (
    DEFAULT_BASS_PATTERN,
    DEFAULT_HIHAT_PATTERN,
    DEFAULT_KICK_PATTERN,
    DEFAULT_SNARE_PATTERN,
    PITCH_CLASSES,
    chord_notes,
    chord_root,
    snap_to_scale,
)

_LOGGER = logging.getLogger("lofistream.synth")

# =============================================================================
# CONSTANTS
# =============================================================================

SAMPLE_RATE = 44100
CHANNELS = 2
MAX_DURATION_SECONDS = 300.0
BLOCK_FRAMES = 1 << 16

BIT_DEPTH = 6
QUANTIZE_LEVELS = 2 ** (BIT_DEPTH - 1)

CRACKLE_BURST_SECONDS = 0.08
POP_SECONDS = 0.02
MELODY_REST_PROBABILITY = 0.7
ECHO_BEATS = 0.75

LEFT_MIX = (0.7, 0.7, 0.7, 1.0, 0.8, 0.9, 1.0)
RIGHT_MIX = (0.7, 0.7, 0.7, 1.0, 0.9, 0.8, 0.8)

FloatArray: TypeAlias = NDArray[np.float64]


# =============================================================================
# PART 1: PRIMITIVES
# =============================================================================


def note_frequency(semitone: ArrayLike, octave: ArrayLike) -> FloatArray:
    """Equal-tempered frequency of a C-relative semitone in ``octave`` (A4 = 440)."""
    steps = np.asarray(semitone, dtype=np.float64) - 9.0
    steps = steps + (np.asarray(octave, dtype=np.float64) - 4.0) * 12.0
    return 440.0 * np.power(2.0, steps / 12.0)


def key_offset(key: str) -> int:
    return PITCH_CLASSES.get(key, 0)


def track_duration(params: MusicParameters, max_duration: float = MAX_DURATION_SECONDS) -> float:
    """Structural length in seconds, never longer than MAX_DURATION_SECONDS."""
    cap = min(MAX_DURATION_SECONDS, max(0.0, max_duration))
    return min(params.requested_duration, cap)


def apply_swing(beat_time: ArrayLike, swing: float) -> FloatArray:
    """Warp beat time so the off-beat eighth lands late.

    ``swing`` 0 keeps straight eighths; 1 pushes the off-beat to 3/4 of the beat.
    """
    beats = np.asarray(beat_time, dtype=np.float64)
    split = 0.5 + 0.25 * min(max(swing, 0.0), 1.0)
    whole = np.floor(beats)
    frac = beats - whole
    warped = np.where(
        frac < split,
        frac * (0.5 / split),
        0.5 + (frac - split) * (0.5 / (1.0 - split)),
    )
    return whole + warped


def _vibrato_phase(freq: FloatArray, t: FloatArray, depth: float, rate: float) -> FloatArray:
    # Phase offset from integrating freq * depth * sin(2 pi rate t).
    return -(freq * depth / rate) * np.cos(2 * np.pi * rate * t)


def _finite(signal: FloatArray) -> FloatArray:
    return np.nan_to_num(signal, nan=0.0, posinf=0.0, neginf=0.0)


def _resolve_pattern(
    pattern: Sequence[float] | None, default: Sequence[float], voice: str
) -> FloatArray:
    """Pattern as a float array, or ``default`` when it is empty or malformed."""
    if pattern is not None and len(pattern) > 0:
        try:
            grid = np.asarray(pattern, dtype=np.float64)
        except (TypeError, ValueError):
            grid = None
        if grid is not None and grid.ndim == 1 and np.all(np.isfinite(grid)):
            return grid
    _LOGGER.debug("Invalid %s pattern %r, using default", voice, pattern)
    return np.asarray(default, dtype=np.float64)


def _quantize(value: float, step: float = 0.001) -> float:
    return round(value / step) * step


@lru_cache(maxsize=64)
def _butter_cached(
    kind: str, normalized_cutoff: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    coeffs = butter(2, normalized_cutoff, btype=kind, output="ba")
    assert isinstance(coeffs, tuple)
    assert len(coeffs) == 2
    b_raw, a_raw = coeffs
    assert isinstance(b_raw, np.ndarray)
    assert isinstance(a_raw, np.ndarray)
    return b_raw, a_raw


class NoiseBand:
    """White noise through a 2nd-order Butterworth, filter state kept across blocks."""

    def __init__(self, rng: np.random.Generator, kind: str, cutoff_hz: float) -> None:
        nyquist = SAMPLE_RATE / 2
        normalized = min(max(cutoff_hz / nyquist, 0.001), 0.99)
        self._b, self._a = _butter_cached(kind, _quantize(normalized))
        self._zi = np.zeros(max(len(self._a), len(self._b)) - 1)
        self._rng = rng

    def draw(self, count: int) -> FloatArray:
        white = self._rng.uniform(-1.0, 1.0, count)
        filtered, self._zi = lfilter(self._b, self._a, white, zi=self._zi)
        return np.asarray(filtered, dtype=np.float64)


# =============================================================================
# PART 2: VOICES
# =============================================================================


def _noise_or_zero(noise: ArrayLike | None, like: FloatArray) -> FloatArray:
    if noise is None:
        return np.zeros_like(like)
    return np.broadcast_to(np.asarray(noise, dtype=np.float64), like.shape)


def kick_voice(
    beat_time: ArrayLike,
    pattern: Sequence[float] | None = None,
    *,
    humanize: bool = True,
    seconds_per_beat: float = 0.75,
) -> FloatArray:
    beats = np.asarray(beat_time, dtype=np.float64)
    grid = _resolve_pattern(pattern, DEFAULT_KICK_PATTERN, "kick")
    if humanize:
        beats = beats + np.sin(beats * 0.7) * 0.015 + np.sin(beats * 1.3) * 0.008

    hit = grid[np.floor(beats * 2).astype(np.int64) % len(grid)] != 0
    phase = beats % 0.5
    envelope = np.exp(-phase * 12)
    local = phase * seconds_per_beat
    body = (
        np.sin(2 * np.pi * 50 * local)
        + np.sin(2 * np.pi * 100 * local) * 0.6
        + np.sin(2 * np.pi * 180 * local) * 0.2
    ) * envelope
    return _finite(np.where(hit, np.tanh(body * 1.3) * 0.8 * 0.8, 0.0))


def snare_voice(
    beat_time: ArrayLike,
    pattern: Sequence[float] | None = None,
    *,
    humanize: bool = True,
    noise: ArrayLike | None = None,
    seconds_per_beat: float = 0.75,
) -> FloatArray:
    beats = np.asarray(beat_time, dtype=np.float64)
    grid = _resolve_pattern(pattern, DEFAULT_SNARE_PATTERN, "snare")
    if humanize:
        beats = beats + np.sin(beats * 0.9) * 0.012 + np.sin(beats * 1.7) * 0.006

    hit = grid[np.floor(beats * 2).astype(np.int64) % len(grid)] != 0
    phase = beats % 0.5
    envelope = np.exp(-phase * 15)
    local = phase * seconds_per_beat
    wires = _noise_or_zero(noise, beats)
    body = (
        np.sin(2 * np.pi * 200 * local)
        + wires * 0.6
        + np.sin(2 * np.pi * 500 * local) * 0.4
        + np.sin(2 * np.pi * 400 * local) * 0.2
    ) * envelope
    return _finite(np.where(hit, np.tanh(body * 1.2) * 0.8 * 0.7, 0.0))


def hihat_voice(
    beat_time: ArrayLike,
    pattern: Sequence[float] | None = None,
    *,
    humanize: bool = True,
    noise: ArrayLike | None = None,
    seconds_per_beat: float = 0.75,
) -> FloatArray:
    beats = np.asarray(beat_time, dtype=np.float64)
    grid = _resolve_pattern(pattern, DEFAULT_HIHAT_PATTERN, "hihat")
    if humanize:
        beats = beats + np.sin(beats * 1.1) * 0.008 + np.sin(beats * 2.3) * 0.004

    hit = grid[np.floor(beats * 2).astype(np.int64) % len(grid)] != 0
    phase = beats % 0.25
    envelope = np.exp(-phase * 25)
    local = phase * seconds_per_beat
    sizzle = _noise_or_zero(noise, beats)
    body = (
        np.sin(2 * np.pi * 8000 * local) * 0.7
        + np.sin(2 * np.pi * 2000 * local) * 0.5
        + sizzle * 0.1
    ) * envelope
    return _finite(np.where(hit, body * 0.15, 0.0))


def bass_voice(beat_time: ArrayLike, t: ArrayLike, params: MusicParameters) -> FloatArray:
    """Chord roots one octave under the chords, gated by the ghost-note table."""
    beats = np.asarray(beat_time, dtype=np.float64)
    seconds = np.asarray(t, dtype=np.float64)
    progression = params.chord_progression or ("Cmaj7",)
    roots = np.array([chord_root(symbol) for symbol in progression]) + key_offset(params.key)

    chord_index = np.floor(beats / 4).astype(np.int64) % len(roots)
    freq = note_frequency(roots[chord_index], 2)

    grid = _resolve_pattern(params.bass_pattern, DEFAULT_BASS_PATTERN, "bass")
    value = grid[np.floor(beats * 4).astype(np.int64) % len(grid)]
    level = np.where(value >= 1, 0.9, np.where(value > 0, value * 0.4, 0.0))

    phase = 2 * np.pi * freq * seconds
    tone = (
        np.sin(phase)
        + np.sin(phase * 0.5) * 0.7
        + np.sin(phase * 2) * 0.4
        + np.sin(phase * 3) * 0.15
    )
    envelope = np.exp(-(beats % 0.6) * 2.2)
    warm = np.tanh(np.tanh(tone * 1.4) * 0.8 * 1.1) * 0.9
    return _finite(warm * level * envelope * 0.75)


def chord_voice(
    beat_time: ArrayLike,
    t: ArrayLike,
    params: MusicParameters,
    *,
    extended: bool = True,
    jazz: bool = True,
) -> FloatArray:
    beats = np.asarray(beat_time, dtype=np.float64)
    seconds = np.asarray(t, dtype=np.float64)
    progression = params.chord_progression or ("Cmaj7",)
    offset = key_offset(params.key)

    chord_index = np.floor(beats / 4).astype(np.int64) % len(progression)
    output = np.zeros(np.broadcast(beats, seconds).shape)
    seconds = np.broadcast_to(seconds, output.shape)
    chord_index = np.broadcast_to(chord_index, output.shape)
    for index, symbol in enumerate(progression):
        mask = chord_index == index
        if not np.any(mask):
            continue
        notes = chord_notes(symbol, extended=extended)
        if not jazz:
            notes = notes[:3]
        freqs = note_frequency(np.array(notes) + offset, 3)
        stacked = np.sin(2 * np.pi * freqs[:, None] * seconds[mask][None, :])
        output[mask] = stacked.sum(axis=0) * 0.1
    return _finite(output)


def melody_voice(
    beat_time: ArrayLike,
    t: ArrayLike,
    params: MusicParameters,
    rests: NDArray[np.bool_] | None = None,
) -> FloatArray:
    """Eighth-note melody in the track's key and scale.

    ``rests`` is indexed by absolute eighth step; a True entry silences a
    root-degree step.
    """
    beats = np.asarray(beat_time, dtype=np.float64)
    seconds = np.asarray(t, dtype=np.float64)
    pattern = params.melody_pattern or (0,)
    offsets = np.array([snap_to_scale(value, params.scale) for value in pattern])
    root_steps = np.array([value == 0 for value in pattern])
    durations = np.asarray(params.note_durations or (0.5,), dtype=np.float64)

    step = np.maximum(np.floor(beats * 2).astype(np.int64), 0)
    index = step % len(pattern)
    low, high = params.octave_range
    octave = np.minimum(low + 1 + index % 2, high)
    freq = note_frequency(offsets[index] + key_offset(params.key), octave)

    resting = np.zeros(step.shape, dtype=bool)
    if rests is not None and len(rests) > 0:
        resting = root_steps[index] & rests[step % len(rests)]

    duration = durations[index % len(durations)]
    envelope = np.exp(-(beats % 0.5) * 1.25 / np.maximum(duration, 0.125))
    volume = 0.12 + np.sin(beats * 0.5) * 0.05
    # 5 Hz vibrato over a slow 0.1 Hz pitch drift.
    phase = (
        2 * np.pi * freq * seconds
        + _vibrato_phase(freq, seconds, 0.004, 5.0)
        + _vibrato_phase(freq, seconds, 0.002, 0.1)
    )
    return _finite(np.where(resting, 0.0, np.sin(phase) * volume * envelope))


@dataclass(frozen=True)
class TexturePlan:
    """Burst and pop onsets (seconds) for a whole track."""

    crackle_starts: FloatArray
    pop_starts: FloatArray


def plan_texture(duration: float, rng: np.random.Generator) -> TexturePlan:
    def onsets(low: float, high: float) -> FloatArray:
        starts: list[float] = []
        cursor = 0.0
        while cursor < duration:
            starts.append(cursor)
            cursor += float(rng.uniform(low, high))
        return np.asarray(starts, dtype=np.float64)

    return TexturePlan(crackle_starts=onsets(0.3, 1.5), pop_starts=onsets(3.0, 9.0))


def _since_last(starts: FloatArray, t: FloatArray) -> FloatArray:
    if len(starts) == 0:
        return np.full(t.shape, np.inf)
    index = np.searchsorted(starts, t, side="right") - 1
    return np.where(index >= 0, t - starts[np.maximum(index, 0)], np.inf)


def vinyl_texture(
    t: ArrayLike,
    settings: LofiSettings,
    plan: TexturePlan,
    *,
    crackle_noise: ArrayLike | None = None,
    hiss_noise: ArrayLike | None = None,
    pop_noise: ArrayLike | None = None,
) -> FloatArray:
    seconds = np.asarray(t, dtype=np.float64)
    if not settings.vinyl_crackle:
        return np.zeros(seconds.shape)

    burst = _since_last(plan.crackle_starts, seconds) < CRACKLE_BURST_SECONDS
    crackle = (
        _noise_or_zero(crackle_noise, seconds)
        + np.sin(2 * np.pi * 8000 * seconds) * 0.12
        + np.sin(2 * np.pi * 2000 * seconds) * 0.06
        + np.sin(2 * np.pi * 500 * seconds) * 0.025
    ) * 0.025
    output = np.where(burst, crackle, 0.0)

    if settings.vinyl_pops:
        pop = _since_last(plan.pop_starts, seconds) < POP_SECONDS
        pop_sound = (
            _noise_or_zero(pop_noise, seconds) * 3 + np.sin(2 * np.pi * 1000 * seconds) * 0.1
        ) * 0.03
        output = output + np.where(pop, pop_sound, 0.0)

    if settings.background_noise:
        output = (
            output
            + _noise_or_zero(hiss_noise, seconds) * 0.004
            + np.sin(2 * np.pi * 3000 * seconds) * 0.005
        )

    return _finite(output + np.sin(seconds * 1.5) * 0.002)


# =============================================================================
# PART 3: MASTER CHAIN + RENDERER
# =============================================================================


def master_chain(
    signal: ArrayLike, t: ArrayLike, params: MusicParameters, settings: LofiSettings
) -> FloatArray:
    """Lo-fi mastering: filter colour, bit reduction, space, drive, glue, tape."""
    x = np.asarray(signal, dtype=np.float64)
    seconds = np.asarray(t, dtype=np.float64)

    base_cutoff = 800 + 2000 * settings.lowpass_filter
    cutoff = base_cutoff + np.sin(seconds * 0.3) * 400
    y = x * np.minimum(1.0, cutoff / 3000)
    resonance = 1.2 + np.sin(seconds * 0.2) * 0.3
    cutoff_phase = 2 * np.pi * (base_cutoff * seconds + (400 / 0.3) * (1 - np.cos(seconds * 0.3)))
    y = y + np.sin(cutoff_phase) * 0.1 * resonance * np.abs(x)

    y = np.round(y * QUANTIZE_LEVELS) / QUANTIZE_LEVELS

    space = params.reverb * 0.7 * (1 + np.sin(seconds * 0.08) * 0.25)
    y = y * (1 + space * 0.8)

    y = np.tanh(y * (1 + params.distortion * 1.5))
    y = np.tanh(y * 1.8) * 0.7

    magnitude = np.abs(y)
    y = np.where(magnitude > 0.25, np.sign(y) * (0.25 + (magnitude - 0.25) * 0.2), y)

    y = y * 0.6 + np.tanh(y * 1.4) * 0.8 * 0.4
    y = y * (1 + np.sin(seconds * 0.4) * 0.015 + np.sin(seconds * 8) * 0.008)
    # Darker opening seconds.
    y = y * (1 - np.exp(-seconds * 0.1) * 0.3)
    return _finite(y * (0.5 + params.volume))


def to_int16(signal: FloatArray) -> NDArray[np.int16]:
    scaled = np.round(_finite(signal) * 32767.0)
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def crossfade_buffers(outgoing: Int16Array, incoming: Int16Array, fade_frames: int) -> Int16Array:
    """Linear crossfade from the tail of ``outgoing`` into the head of ``incoming``."""
    if fade_frames <= 0:
        return np.zeros((0, CHANNELS), dtype=np.int16)

    def _fit(buffer: Int16Array, tail: bool) -> FloatArray:
        part = buffer[-fade_frames:] if tail else buffer[:fade_frames]
        part = np.asarray(part, dtype=np.float64).reshape(-1, CHANNELS)
        missing = fade_frames - part.shape[0]
        if missing > 0:
            pad = np.zeros((missing, CHANNELS))
            part = np.concatenate((pad, part) if tail else (part, pad))
        return part

    ramp = np.linspace(0.0, 1.0, fade_frames)[:, None]
    mixed = _fit(outgoing, True) * (1 - ramp) + _fit(incoming, False) * ramp
    return np.clip(np.round(mixed), -32768, 32767).astype(np.int16)


def synthesize(
    params: MusicParameters,
    *,
    settings: LofiSettings | None = None,
    max_duration: float = MAX_DURATION_SECONDS,
    rng: np.random.Generator | None = None,
) -> Int16Array:
    """Render ``params`` to interleaved-ready int16 stereo, shape ``(frames, 2)``."""
    settings = settings or LofiSettings()
    rng = rng if rng is not None else np.random.default_rng(stable_hash(params.seed))

    duration = track_duration(params, max_duration)
    frames = int(math.floor(duration * SAMPLE_RATE))
    output = np.zeros((frames, CHANNELS), dtype=np.int16)
    if frames == 0:
        _LOGGER.warning("Parameters %s produced an empty track", params.seed)
        return output

    if duration < params.requested_duration:
        _LOGGER.info(
            "Capping track %s at %.1fs (requested %.1fs)",
            params.seed,
            duration,
            params.requested_duration,
        )

    beats_per_second = params.tempo / 60.0
    seconds_per_beat = 1.0 / beats_per_second
    total_steps = int(math.ceil(duration * beats_per_second * 2)) + 1
    rests = rng.random(total_steps) < MELODY_REST_PROBABILITY
    plan = plan_texture(duration, rng)
    crackle_band = NoiseBand(rng, "high", 1000.0)
    hiss_band = NoiseBand(rng, "low", 5000.0)

    for start in range(0, frames, BLOCK_FRAMES):
        stop = min(start + BLOCK_FRAMES, frames)
        count = stop - start
        t = np.arange(start, stop, dtype=np.float64) / SAMPLE_RATE
        beat_time = t * beats_per_second
        swung = apply_swing(beat_time, params.swing)

        drum_noise = rng.uniform(-1.0, 1.0, count)
        kick = kick_voice(
            swung,
            params.kick_pattern,
            humanize=settings.humanization,
            seconds_per_beat=seconds_per_beat,
        )
        snare = snare_voice(
            swung,
            params.snare_pattern,
            humanize=settings.humanization,
            noise=drum_noise,
            seconds_per_beat=seconds_per_beat,
        )
        hihat = hihat_voice(
            swung,
            params.hihat_pattern,
            humanize=settings.humanization,
            noise=drum_noise,
            seconds_per_beat=seconds_per_beat,
        )
        bass = bass_voice(beat_time, t, params)
        chords = chord_voice(
            beat_time,
            t,
            params,
            extended=settings.extended_chords,
            jazz=settings.jazz_chords,
        )
        melody = melody_voice(beat_time, t, params, rests)
        if params.delay > 0:
            echo = melody_voice(
                beat_time - ECHO_BEATS, t - ECHO_BEATS * seconds_per_beat, params, rests
            )
            melody = melody + np.where(beat_time >= ECHO_BEATS, echo, 0.0) * params.delay * 0.35
        texture = vinyl_texture(
            t,
            settings,
            plan,
            crackle_noise=crackle_band.draw(count),
            hiss_noise=hiss_band.draw(count),
            pop_noise=rng.uniform(-1.0, 1.0, count),
        )

        layers = (kick, snare, hihat, bass, chords, melody, texture)
        left = sum(weight * layer for weight, layer in zip(LEFT_MIX, layers))
        right = sum(weight * layer for weight, layer in zip(RIGHT_MIX, layers))
        output[start:stop, 0] = to_int16(master_chain(left, t, params, settings))
        output[start:stop, 1] = to_int16(master_chain(right, t, params, settings))

    _LOGGER.debug("Rendered %s: %d frames (%.1fs)", params.seed, frames, duration)
    return output
