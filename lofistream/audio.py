from __future__ import annotations

import io
import json
import logging
import struct
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import InvalidInputError

if TYPE_CHECKING:
    from .models import GeneratedTrack

_LOGGER = logging.getLogger("lofistream.audio")

SAMPLE_RATE = 44_100
CHANNELS = 2
BITS_PER_SAMPLE = 16
BLOCK_ALIGN = CHANNELS * BITS_PER_SAMPLE // 8
BYTE_RATE = SAMPLE_RATE * BLOCK_ALIGN
HEADER_SIZE = 44

# RIFF id, RIFF size, WAVE, "fmt ", fmt size, format, channels, rate,
# byte rate, block align, bits, "data", data size.
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavInfo(BaseModel):
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int
    frame_count: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0


def _as_stereo(samples: NDArray[Any]) -> NDArray[np.int16]:
    array = np.asarray(samples)
    if array.dtype != np.int16:
        raise InvalidInputError(f"Expected int16 samples, got {array.dtype}")
    match array.ndim:
        case 1:
            return np.repeat(array[:, None], CHANNELS, axis=1)
        case 2 if array.shape[1] == CHANNELS:
            return array
        case _:
            raise InvalidInputError(f"Expected (frames, {CHANNELS}) samples, got {array.shape}")


def encode_wav(samples: NDArray[np.int16]) -> bytes:
    """Uncompressed 16-bit stereo PCM at 44.1 kHz with the canonical 44-byte header."""

    stereo = _as_stereo(samples)
    payload = np.ascontiguousarray(stereo, dtype="<i2").tobytes()
    header = _HEADER.pack(
        b"RIFF",
        36 + len(payload),
        b"WAVE",
        b"fmt ",
        16,
        1,
        CHANNELS,
        SAMPLE_RATE,
        BYTE_RATE,
        BLOCK_ALIGN,
        BITS_PER_SAMPLE,
        b"data",
        len(payload),
    )
    return header + payload


def parse_wav_header(data: bytes) -> WavInfo:
    if len(data) < HEADER_SIZE:
        raise InvalidInputError(f"WAVE data too short: {len(data)} bytes")
    (
        riff,
        _riff_size,
        wave,
        fmt_id,
        _fmt_size,
        audio_format,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits,
        data_id,
        data_size,
    ) = _HEADER.unpack_from(data)
    if riff != b"RIFF" or wave != b"WAVE" or fmt_id != b"fmt " or data_id != b"data":
        raise InvalidInputError("Not a canonical RIFF/WAVE container")
    if audio_format != 1:
        raise InvalidInputError(f"Unsupported WAVE format tag {audio_format}")
    return WavInfo(
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits,
        data_size=data_size,
        frame_count=data_size // block_align if block_align else 0,
    )


def decode_wav(data: bytes) -> tuple[NDArray[np.int16], int]:
    """Decode container bytes through soundfile; returns ``(samples, sample_rate)``."""

    read_fn = cast(Any, sf.read)
    samples, sample_rate = read_fn(io.BytesIO(data), dtype="int16", always_2d=True)
    return np.asarray(samples, dtype=np.int16), int(sample_rate)


def save_track(path: str | Path, track: "GeneratedTrack") -> Path:
    """Write the WAVE bytes to ``path`` and metadata to a ``.json`` sidecar."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(track.wav)
    sidecar = target.with_suffix(".json")
    document = {
        "id": track.id,
        "metadata": track.metadata.to_json_dict(),
        "provenance": track.provenance.model_dump(),
        "parameters": track.parameters.model_dump(mode="json"),
        "duration": track.duration,
    }
    sidecar.write_text(json.dumps(document, indent=2), encoding="utf-8")
    _LOGGER.info("Saved track %s to %s", track.id, target)
    return target
