from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

import numpy as np

from .audio import SAMPLE_RATE
from .errors import PlaybackError
from .models import GeneratedTrack, Int16Array
from .synth import crossfade_buffers

_LOGGER = logging.getLogger("lofistream.playback")


class PlaybackSink(Protocol):
    async def play(self, track: GeneratedTrack) -> None: ...

    async def crossfade(
        self, outgoing: GeneratedTrack, incoming: GeneratedTrack, seconds: float
    ) -> None: ...

    async def close(self) -> None: ...


def _fade_frames(seconds: float) -> int:
    return max(0, int(round(seconds * SAMPLE_RATE)))


class BufferSink:
    """In-memory sink: keeps every played track and crossfade mix."""

    def __init__(self) -> None:
        self.played: list[GeneratedTrack] = []
        self.mixes: list[Int16Array] = []
        self.closed = False

    @property
    def current(self) -> GeneratedTrack | None:
        return self.played[-1] if self.played else None

    async def play(self, track: GeneratedTrack) -> None:
        self.played.append(track)

    async def crossfade(
        self, outgoing: GeneratedTrack, incoming: GeneratedTrack, seconds: float
    ) -> None:
        self.mixes.append(
            crossfade_buffers(outgoing.samples, incoming.samples, _fade_frames(seconds))
        )
        self.played.append(incoming)

    async def close(self) -> None:
        self.closed = True


def _load_sounddevice() -> Any | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    return sd_module


class DeviceSink:
    """Real-time output through sounddevice."""

    def __init__(self) -> None:
        sd = _load_sounddevice()
        if sd is None:
            raise PlaybackError(
                "Device playback requires sounddevice. Install lofistream[playback]."
            )
        self._sd: Any = sd
        self._started_at: float | None = None

    def _position(self) -> int:
        if self._started_at is None:
            return 0
        return int((time.monotonic() - self._started_at) * SAMPLE_RATE)

    def _start(self, samples: Int16Array) -> None:
        self._sd.stop()
        self._sd.play(samples, SAMPLE_RATE)
        self._started_at = time.monotonic()

    async def play(self, track: GeneratedTrack) -> None:
        await asyncio.to_thread(self._start, track.samples)

    async def crossfade(
        self, outgoing: GeneratedTrack, incoming: GeneratedTrack, seconds: float
    ) -> None:
        frames = _fade_frames(seconds)
        position = min(self._position(), outgoing.frame_count)
        mix = crossfade_buffers(outgoing.samples[: position + frames], incoming.samples, frames)
        combined = np.concatenate((mix, incoming.samples[frames:]))
        await asyncio.to_thread(self._start, combined)
        await asyncio.sleep(seconds)

    async def close(self) -> None:
        await asyncio.to_thread(self._sd.stop)
        self._started_at = None
