from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from .logging_utils import debug_enabled
from .models import GeneratedTrack, SnapshotReceipt, StreamingSession

_LOGGER = logging.getLogger("lofistream.events")

EventKind = Literal[
    "session_started",
    "new_track",
    "crossfade_started",
    "snapshot_requested",
    "configuration_evolved",
    "streaming_error",
    "session_ended",
]
EVENT_KINDS: tuple[EventKind, ...] = (
    "session_started",
    "new_track",
    "crossfade_started",
    "snapshot_requested",
    "configuration_evolved",
    "streaming_error",
    "session_ended",
)


class SessionEvent(BaseModel):
    kind: EventKind
    session: StreamingSession | None = None
    track: GeneratedTrack | None = None
    error: Exception | None = None
    receipt: SnapshotReceipt | None = None
    payload: dict[str, Any] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


Listener = Callable[[SessionEvent], Any]


class Subscription:
    def __init__(self, bus: "EventBus", kind: EventKind | None, callback: Listener) -> None:
        self._bus = bus
        self.kind = kind
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class EventBus:
    """Typed pub/sub; every listener runs inside its own exception boundary."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Future[Any]] = set()

    def subscribe(self, kind: EventKind, callback: Listener) -> Subscription:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown session event kind: {kind}")
        subscription = Subscription(self, kind, callback)
        self._subscriptions.append(subscription)
        return subscription

    def subscribe_all(self, callback: Listener) -> Subscription:
        subscription = Subscription(self, None, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    @property
    def pending_listeners(self) -> int:
        """Async listener calls scheduled but not yet finished."""
        return len(self._pending)

    def emit(self, event: SessionEvent) -> None:
        # Snapshot so listeners may unsubscribe while being called.
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            if subscription.kind is not None and subscription.kind != event.kind:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
                    task.add_done_callback(_log_listener_task)
            except Exception as exc:
                _LOGGER.warning(
                    "Session listener for %s failed: %s", event.kind, exc, exc_info=debug_enabled()
                )


def _log_listener_task(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _LOGGER.warning(
            "Async session listener failed: %s", exc, exc_info=exc if debug_enabled() else None
        )
