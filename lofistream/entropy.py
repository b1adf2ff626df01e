"""Injected sources of time and randomness.

Derivation is a pure function of its inputs plus whatever the entropy source
reports, so tests pin both with :class:`FixedEntropy`.
"""

from __future__ import annotations

import hashlib
import math
import random
import time
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@runtime_checkable
class EntropySource(Protocol):
    def now(self) -> float: ...

    def random(self) -> float: ...


class SystemEntropy:
    """Wall clock plus a process-local PRNG."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def now(self) -> float:
        return time.time()

    def random(self) -> float:
        return self._rng.random()


class FixedEntropy:
    """Deterministic stand-in: a frozen clock and a cycling list of draws."""

    def __init__(self, now: float = 0.0, values: Sequence[float] = (0.5,)) -> None:
        if not values:
            raise ValueError("FixedEntropy needs at least one value")
        self._now = now
        self._values = tuple(values)
        self._index = 0

    def now(self) -> float:
        return self._now

    def set_now(self, now: float) -> None:
        self._now = now

    def random(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        return value


def time_bucket(now: float, interval: float) -> int:
    return int(math.floor(now / interval))


def stable_hash(text: str) -> int:
    """Process-independent 64-bit hash (``hash()`` is salted per run)."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def random_suffix(entropy: EntropySource, length: int = 4) -> str:
    chars = []
    for _ in range(length):
        index = min(int(entropy.random() * len(_BASE36)), len(_BASE36) - 1)
        chars.append(_BASE36[index])
    return "".join(chars)
