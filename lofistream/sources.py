"""Collaborators the session manager talks to: event sources and archivers."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Sequence
from pathlib import Path
from typing import Protocol, TypeVar

from .audio import save_track
from .models import GeneratedTrack, SnapshotReceipt, SourceEvent

_LOGGER = logging.getLogger("lofistream.sources")

T = TypeVar("T")


class EventSource(Protocol):
    def fetch_recent_events(
        self, count: int
    ) -> Sequence[SourceEvent] | Awaitable[Sequence[SourceEvent]]: ...


class Archiver(Protocol):
    def archive(self, track: GeneratedTrack) -> SnapshotReceipt | Awaitable[SnapshotReceipt]: ...


async def maybe_await(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


def _hex(rng: random.Random, bits: int) -> str:
    return f"0x{rng.getrandbits(bits):0{bits // 4}x}"


class MockEventSource:
    """Seeded random activity for development and demos.

    Each fetch returns ``count`` consecutive events spaced two seconds apart,
    continuing the sequence numbers of the previous fetch.
    """

    def __init__(
        self,
        seed: int | None = None,
        *,
        start_sequence: int = 1_000_000,
        cost_scale: float = 1e10,
    ) -> None:
        self._rng = random.Random(seed)
        self._sequence = start_sequence
        self._cost_scale = cost_scale

    def fetch_recent_events(self, count: int) -> list[SourceEvent]:
        now = int(time.time())
        events: list[SourceEvent] = []
        for index in range(count):
            events.append(
                SourceEvent.create(
                    sequence=self._sequence,
                    parent_hash=_hex(self._rng, 256),
                    timestamp=now - (count - index) * 2,
                    cost=self._rng.random() * self._cost_scale,
                    flow=float(self._rng.randrange(0, 1_000_000)),
                    origin=_hex(self._rng, 160),
                    destination=_hex(self._rng, 160),
                    value=self._rng.randrange(0, 10**18),
                )
            )
            self._sequence += 1
        _LOGGER.debug("Mock source produced %d events", count)
        return events


class StaticEventSource:
    """Replays fixed batches in order; the last batch repeats once exhausted.

    A batch given as an exception instance is raised instead of returned.
    """

    def __init__(self, batches: Sequence[Sequence[SourceEvent] | Exception]) -> None:
        if not batches:
            raise ValueError("StaticEventSource needs at least one batch")
        self._batches = list(batches)
        self._index = 0
        self.fetch_count = 0

    async def fetch_recent_events(self, count: int) -> list[SourceEvent]:
        batch = self._batches[min(self._index, len(self._batches) - 1)]
        self._index += 1
        self.fetch_count += 1
        if isinstance(batch, Exception):
            raise batch
        return list(batch[:count])


class DirectoryArchiver:
    """Archives snapshots as WAV + metadata JSON under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    async def archive(self, track: GeneratedTrack) -> SnapshotReceipt:
        target = self.root / f"{track.id}.wav"
        path = await asyncio.to_thread(save_track, target, track)
        receipt = SnapshotReceipt(
            id=f"snapshot_{track.id}",
            location_uri=path.resolve().as_uri(),
        )
        _LOGGER.info("Archived snapshot %s at %s", receipt.id, receipt.location_uri)
        return receipt
