"""Hand-authored musical catalogues for the lofi profile.

Derivation picks one entry per catalogue; synthesis falls back to the
DEFAULT_* tables when a picked entry turns out to be empty.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

# =============================================================================
# PITCH TABLES
# =============================================================================

PITCH_CLASSES: Mapping[str, int] = MappingProxyType(
    {
        "C": 0,
        "C#": 1,
        "Db": 1,
        "D": 2,
        "D#": 3,
        "Eb": 3,
        "E": 4,
        "F": 5,
        "F#": 6,
        "Gb": 6,
        "G": 7,
        "G#": 8,
        "Ab": 8,
        "A": 9,
        "A#": 10,
        "Bb": 10,
        "B": 11,
    }
)

# Duplicates are intentional: they weight the jazz-friendly keys.
JAZZ_KEYS: tuple[str, ...] = (
    "C", "F", "Bb", "Eb", "Ab", "Db", "Gb",
    "B", "E", "A", "D", "G",
    "C#", "F#", "Bb", "Eb", "Ab",
    "G#", "C#", "F#", "B", "E",
)  # fmt: skip

SCALE_INTERVALS: Mapping[str, tuple[int, ...]] = MappingProxyType(
    {
        "major": (0, 2, 4, 5, 7, 9, 11),
        "minor": (0, 2, 3, 5, 7, 8, 10),
        "dorian": (0, 2, 3, 5, 7, 9, 10),
        "mixolydian": (0, 2, 4, 5, 7, 9, 10),
        "lydian": (0, 2, 4, 6, 7, 9, 11),
        "phrygian": (0, 1, 3, 5, 7, 8, 10),
        "locrian": (0, 1, 3, 5, 6, 8, 10),
        "harmonic-minor": (0, 2, 3, 5, 7, 8, 11),
        "melodic-minor": (0, 2, 3, 5, 7, 9, 11),
        "pentatonic-major": (0, 2, 4, 7, 9),
        "pentatonic-minor": (0, 3, 5, 7, 10),
        "blues": (0, 3, 5, 6, 7, 10),
        "diminished": (0, 2, 3, 5, 6, 8, 9, 11),
        "whole-tone": (0, 2, 4, 6, 8, 10),
        "chromatic": tuple(range(12)),
    }
)

JAZZ_SCALES: tuple[str, ...] = tuple(SCALE_INTERVALS.keys())

# =============================================================================
# HARMONY + MELODY
# =============================================================================

CHORD_PROGRESSIONS: tuple[tuple[str, ...], ...] = (
    # Classic
    ("Cmaj7", "Am7", "Fmaj7", "G7"),
    ("Am7", "Dm7", "G7", "Cmaj7"),
    ("Fmaj7", "G7", "Em7", "Am7"),
    ("Cmaj7", "Em7", "Am7", "Dm7"),
    # Extended harmony
    ("Cmaj9", "Am9", "Dm9", "G9"),
    ("Am11", "Fmaj9", "Cmaj9", "G9"),
    ("Fmaj11", "Em9", "Dm9", "G9"),
    ("Cmaj9", "Fmaj9", "Am9", "G9"),
    # Eight bar
    ("Cmaj7", "Am7", "Fmaj7", "G7", "Em7", "Am7", "Dm7", "G7"),
    ("Am7", "Dm7", "G7", "Cmaj7", "Fmaj7", "Em7", "Am7", "Dm7"),
    # Minor centres
    ("Am7", "Dm7", "G7", "Cmaj7"),
    ("Dm7", "G7", "Cmaj7", "Fmaj7"),
    ("Em7", "Am7", "Dm7", "G7"),
    # Modal
    ("Cmaj7", "Dm7", "Em7", "Fmaj7"),
    ("Fmaj7", "G7", "Am7", "Bb7"),
    ("Cmaj7", "Fmaj7", "G7", "Am7"),
    # ii-V chains
    ("Cmaj9", "Am9", "Dm9", "G9", "Em9", "Am9", "Dm9", "G9"),
    ("Am11", "D9", "Dm9", "G9", "Cmaj9", "A9", "Dm9", "G9"),
    ("Cmaj11", "Am9", "Fmaj9", "G9"),
    ("Am9", "Dm9", "G9", "Cmaj9"),
    ("Fmaj7", "Am7", "Dm7", "G7"),
    ("Cmaj7", "Am7", "Fmaj7", "Am7"),
    ("Am7", "Fmaj7", "Dm7", "G7"),
    ("Dm7", "G7", "Cmaj7", "Am7"),
    ("Em7", "Am7", "Dm7", "G7"),
    ("G7", "Cmaj7", "Am7", "Fmaj7"),
    ("Bb7", "Am7", "Dm7", "G7"),
    ("Cmaj7", "Bb7", "Am7", "G7"),
    ("Fmaj7", "Bb7", "Am7", "Dm7"),
    ("Am7", "Bb7", "Fmaj7", "G7"),
    ("Cmaj7", "Am7", "Fmaj7", "G7", "Am7", "Dm7", "G7", "Cmaj7"),
    ("Am7", "Dm7", "G7", "Cmaj7", "Fmaj7", "Em7", "Am7", "Dm7"),
    ("Fmaj7", "G7", "Em7", "Am7", "Dm7", "G7", "Cmaj7", "Am7"),
    # Chromatic
    ("Cmaj7", "C#m7", "Dm7", "D#m7"),
    ("Am7", "Ab7", "G7", "Gb7"),
    # Substitutions
    ("Cmaj7", "F#m7", "Bm7", "Em7"),
    ("Am7", "D7", "Gm7", "C7"),
    ("Fmaj7", "Bbmaj7", "Ebmaj7", "Abmaj7"),
)

# Semitone offsets above the key root; snapped to the scale at render time.
MELODY_PATTERNS: tuple[tuple[int, ...], ...] = (
    (0, 2, 4, 2, 0, 2, 4, 2),
    (0, 4, 7, 4, 0, 4, 7, 4),
    (0, 2, 0, 4, 2, 0, 2, 4),
    (0, 7, 4, 2, 0, 7, 4, 2),
    (0, 2, 4, 7, 4, 2, 0, 2),
    (0, 4, 7, 2, 0, 4, 7, 2),
    (0, 2, 0, 7, 4, 0, 2, 4),
    (0, 7, 4, 0, 2, 7, 4, 0),
    (0, 3, 5, 7, 5, 3, 0, 3),
    (0, 5, 7, 3, 0, 5, 7, 3),
    (0, 3, 0, 7, 5, 0, 3, 5),
    (0, 7, 5, 0, 3, 7, 5, 0),
    (0, 3, 5, 6, 7, 5, 3, 0),
    (0, 5, 6, 7, 3, 0, 5, 6),
    (0, 3, 0, 6, 7, 0, 3, 5),
    (0, 0, 4, 0, 7, 0, 2, 0),
    (0, 0, 0, 7, 0, 0, 4, 0),
    (0, 2, 0, 0, 7, 0, 0, 4),
    (0, 0, 0, 0, 0, 7, 0, 0),
    (0, 4, 0, 4, 7, 4, 0, 4),
    (0, 7, 0, 7, 4, 7, 0, 7),
)

NOTE_DURATIONS: tuple[float, ...] = (0.5, 0.5, 1.0, 0.5, 0.5, 0.5, 1.0, 0.5)

# =============================================================================
# RHYTHM (eighth-note grids, bass on sixteenths)
# =============================================================================

DEFAULT_KICK_PATTERN: tuple[int, ...] = (1, 0, 0, 0, 1, 0, 0, 0)
DEFAULT_SNARE_PATTERN: tuple[int, ...] = (0, 0, 1, 0, 0, 0, 1, 0)
DEFAULT_HIHAT_PATTERN: tuple[int, ...] = (0, 0, 1, 0, 0, 0, 1, 0)
DEFAULT_BASS_PATTERN: tuple[float, ...] = (1, 0, 0.3, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0.2, 0, 0)

KICK_PATTERNS: tuple[tuple[int, ...], ...] = (
    (1, 0, 0, 0, 1, 0, 0, 0),
    (1, 0, 0, 1, 0, 0, 1, 0),
    (1, 0, 1, 0, 0, 0, 1, 0),
    (1, 0, 0, 0, 1, 0, 0, 1),
    (1, 0, 0, 1, 0, 1, 0, 0),
    (1, 0, 1, 0, 1, 0, 0, 0),
    (0, 0, 1, 0, 1, 0, 0, 1),
    (1, 0, 0, 0, 0, 1, 0, 1),
    (1, 0, 1, 1, 0, 0, 1, 0),
    (1, 0, 0, 1, 1, 0, 0, 1),
    (1, 1, 0, 0, 1, 0, 1, 0),
    (0, 1, 0, 1, 0, 1, 0, 1),
    (1, 0, 0, 0, 0, 0, 1, 0),
    (1, 0, 0, 0, 0, 0, 0, 1),
    (0, 0, 1, 0, 0, 0, 1, 0),
    (1, 0, 0, 0, 0, 1, 0, 0),
    (1, 0, 0, 0, 0, 0, 0, 0),
    (1, 0, 0, 1, 0, 0, 0, 0),
    (1, 0, 1, 0, 0, 0, 0, 0),
    (0, 0, 0, 0, 1, 0, 0, 1),
)

SNARE_PATTERNS: tuple[tuple[int, ...], ...] = (
    (0, 1, 0, 0, 0, 1, 0, 0),
    (0, 1, 0, 1, 0, 1, 0, 0),
    (0, 1, 0, 0, 0, 1, 0, 1),
    (0, 0, 1, 0, 0, 1, 0, 0),
    (0, 1, 0, 1, 0, 0, 1, 0),
    (0, 0, 1, 0, 0, 1, 0, 1),
    (0, 1, 0, 0, 1, 0, 0, 1),
    (0, 0, 1, 1, 0, 1, 0, 0),
    (0, 1, 0, 1, 0, 1, 0, 1),
    (0, 1, 1, 0, 0, 1, 1, 0),
    (0, 1, 0, 0, 0, 0, 0, 0),
    (0, 0, 0, 0, 0, 1, 0, 0),
    (0, 1, 0, 0, 0, 0, 0, 1),
    (0, 0, 0, 1, 0, 1, 0, 0),
)

HIHAT_PATTERNS: tuple[tuple[int, ...], ...] = (
    (0, 0, 1, 0, 0, 0, 1, 0),
    (0, 1, 0, 1, 0, 1, 0, 1),
    (0, 0, 1, 0, 0, 1, 0, 0),
    (1, 0, 1, 0, 1, 0, 1, 0),
    (0, 1, 0, 0, 0, 1, 0, 0),
    (0, 0, 0, 1, 0, 0, 0, 1),
    (0, 1, 0, 0, 1, 0, 0, 0),
    (0, 0, 1, 0, 0, 0, 0, 0),
    (0, 0, 0, 0, 0, 0, 1, 0),
    (0, 1, 0, 0, 0, 0, 0, 0),
    (0, 0, 0, 1, 0, 0, 0, 0),
    (0, 1, 0, 1, 0, 0, 1, 0),
    (0, 0, 1, 0, 1, 0, 0, 1),
    (1, 0, 0, 1, 0, 1, 0, 0),
    (0, 1, 1, 0, 0, 1, 1, 0),
    (0, 0, 0, 0, 0, 1, 0, 0),
)

# Sixteenth-note amplitude tables; fractional entries are ghost notes.
BASS_PATTERNS: tuple[tuple[float, ...], ...] = (
    (1, 0, 0.3, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0.2, 0, 0),
    (1, 0, 0, 0, 0, 0.4, 1, 0, 0, 0, 1, 0, 0, 0, 0.3, 0),
    (1, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0.2, 1, 0, 0, 0, 0.4),
    (1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0.3, 0),
    (1, 0, 0.2, 0, 1, 0, 0, 0, 1, 0, 0.3, 0, 1, 0, 0, 0),
    (1, 0, 0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0, 1, 0.2),
    (1, 0, 0, 0.3, 0, 0, 1, 0, 0, 0.2, 1, 0, 0, 0, 0, 0.4),
    (1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 0.3),
)

BACKGROUND_COLORS: tuple[str, ...] = ("#2D1B69", "#11998E", "#38EF7D", "#FF6B6B", "#4ECDC4")


def chord_root(symbol: str) -> int:
    """Pitch class of a chord symbol's root (``"Bbmaj7"`` -> 10)."""
    if len(symbol) >= 2 and symbol[:2] in PITCH_CLASSES:
        return PITCH_CLASSES[symbol[:2]]
    return PITCH_CLASSES.get(symbol[:1], 0)


def chord_notes(symbol: str, *, extended: bool = False) -> tuple[int, ...]:
    """Semitone offsets (from C) of every note in ``symbol``.

    Seventh chords gain a 9th and 11th when ``extended`` is set; explicit
    9th/11th chords always carry their extensions.
    """
    root = chord_root(symbol)
    quality = symbol[2:] if len(symbol) >= 2 and symbol[:2] in PITCH_CLASSES else symbol[1:]
    minor = quality.startswith("m") and not quality.startswith("maj")
    third = 3 if minor else 4
    if "maj" in quality:
        seventh = 11
    elif any(ch.isdigit() for ch in quality):
        seventh = 10
    else:
        seventh = None

    notes = [root, root + third, root + 7]
    if seventh is not None:
        notes.append(root + seventh)
    if "11" in quality:
        notes.extend((root + 14, root + 17))
    elif "9" in quality:
        notes.append(root + 14)
    elif seventh is not None and extended:
        notes.extend((root + 14, root + 17))
    return tuple(notes)


def snap_to_scale(offset: int, scale: str) -> int:
    """Move a semitone offset onto the nearest tone of ``scale``."""
    intervals = SCALE_INTERVALS.get(scale, SCALE_INTERVALS["major"])
    octave, pitch = divmod(offset, 12)
    nearest = min(intervals, key=lambda interval: (abs(interval - pitch), interval))
    return octave * 12 + nearest
