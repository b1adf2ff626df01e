# pyright: reportPrivateUsage=false

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator, Sequence
from typing import Literal

from .clock import Clock, SystemClock
from .config import LofiSettings, StreamingSettings
from .derive import batch_activity
from .entropy import EntropySource, SystemEntropy, random_suffix
from .errors import AlreadyStreamingError, SessionNotActiveError, StreamingError
from .events import EventBus, EventKind, SessionEvent
from .evolution import EvolutionResult, evolve_settings
from .logging_utils import debug_enabled
from .models import (
    CurrentTrack,
    GeneratedTrack,
    SessionStats,
    SnapshotReceipt,
    SourceEvent,
    StreamingSession,
    StreamingStats,
)
from .package import TrackGenerator
from .playback import BufferSink, PlaybackSink
from .sources import Archiver, EventSource, maybe_await

_LOGGER = logging.getLogger("lofistream.session")

SessionState = Literal["idle", "starting", "active", "generating", "stopping", "stopped"]
_LIVE_STATES: frozenset[SessionState] = frozenset({"starting", "active", "generating", "stopping"})


class _SessionClosed(Exception):
    """The session stopped while a start or tick was awaiting; its result is discarded."""


@contextlib.contextmanager
def _stage(name: str) -> Iterator[None]:
    try:
        yield
    except StreamingError:
        raise
    except Exception as exc:
        raise StreamingError(f"{name} failed: {exc}", stage=name) from exc


def _relative_change(previous: float, current: float) -> float:
    if previous == 0:
        return 0.0 if current == 0 else float("inf")
    return abs(current - previous) / abs(previous)


class StreamingSessionManager:
    """Runs one continuous stream: ticks, snapshots, track advances, crossfades.

    Session state is published as immutable ``StreamingSession`` copies. A
    new track only replaces the current one after it has been generated and
    crossfaded in, so a failing tick never leaves a half-updated session.
    """

    def __init__(
        self,
        source: EventSource,
        generator: TrackGenerator,
        *,
        archiver: Archiver | None = None,
        sink: PlaybackSink | None = None,
        clock: Clock | None = None,
        entropy: EntropySource | None = None,
        settings: StreamingSettings | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._source = source
        self._generator = generator
        self._home_settings = generator.settings
        self._archiver = archiver
        self._sink: PlaybackSink = sink if sink is not None else BufferSink()
        self._clock: Clock = clock or SystemClock()
        self._entropy = entropy or SystemEntropy()
        self._settings = settings or StreamingSettings()
        self.events = events or EventBus()

        self._state: SessionState = "idle"
        self._session: StreamingSession | None = None
        self._track: GeneratedTrack | None = None
        self._last_batch: list[SourceEvent] = []
        self._previous_activity: tuple[float, int] = (0.0, 0)
        self._current_listeners = 0
        self._timer: asyncio.Task[None] | None = None
        self._tick_lock = asyncio.Lock()
        # Bumped by every start and stop; in-flight work only commits under its own epoch.
        self._epoch = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> StreamingSession | None:
        return self._session

    @property
    def current_track(self) -> GeneratedTrack | None:
        return self._track

    @property
    def settings(self) -> LofiSettings:
        return self._generator.settings

    @property
    def is_streaming(self) -> bool:
        return self._state in ("active", "generating")

    def stats(self) -> StreamingStats:
        session = self._session
        if session is None:
            return StreamingStats(
                is_active=False,
                session_duration=0.0,
                tracks_played=0,
                snapshots_created=0,
                current_listeners=0,
            )
        end = session.end_time if session.end_time is not None else self._clock.now()
        return StreamingStats(
            is_active=session.is_active,
            session_duration=max(0.0, end - session.start_time),
            tracks_played=session.stats.tracks_played,
            snapshots_created=len(session.snapshot_ids),
            current_listeners=self._current_listeners,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> StreamingSession:
        if self._state in _LIVE_STATES:
            raise AlreadyStreamingError("Streaming is already active")

        self._epoch += 1
        epoch = self._epoch
        self._state = "starting"
        try:
            with _stage("fetch"):
                batch = list(await self._fetch())
            self._ensure_current(epoch)
            if not batch:
                raise StreamingError("Event source returned no events", stage="start")
            with _stage("synthesis"):
                track = await self._generate(self._generator, batch)
            self._ensure_current(epoch)
            with _stage("playback"):
                await self._sink.play(track)
            self._ensure_current(epoch)
        except asyncio.CancelledError:
            self._state = "idle"
            raise
        except _SessionClosed:
            try:
                await self._sink.close()
            except Exception as exc:
                _LOGGER.warning("Closing playback sink failed: %s", exc, exc_info=debug_enabled())
            self._state = "stopped"
            _LOGGER.info("Stopped while starting; no session was opened")
            raise StreamingError("Streaming was stopped before it started", stage="start")
        except StreamingError as exc:
            self._state = "idle" if epoch == self._epoch else "stopped"
            _LOGGER.warning("Failed to start streaming: %s", exc, exc_info=debug_enabled())
            raise StreamingError(f"Failed to start streaming: {exc}", stage="start") from exc

        now = self._clock.now()
        self._track = track
        self._last_batch = batch
        self._previous_activity = batch_activity(batch)
        self._current_listeners = 0
        self._session = StreamingSession(
            id=f"session_{int(now * 1000)}_{random_suffix(self._entropy, 9)}",
            start_time=now,
            current_track=self._current_track_for(track, now),
            stats=SessionStats(tracks_played=1),
        )
        self._state = "active"
        _LOGGER.info("Streaming session %s started with track %s", self._session.id, track.id)
        self._emit("session_started", track=track)
        self._timer = asyncio.create_task(self._run_timer())
        return self._session

    async def stop(self) -> None:
        """Stop streaming; a no-op when nothing is running.

        A start still in flight is cancelled: it tears itself down at its next
        checkpoint and raises StreamingError instead of opening a session.
        """
        if self._state == "starting":
            self._epoch += 1
            self._state = "stopping"
            _LOGGER.info("Stop requested while starting; discarding the pending start")
            return
        if self._state not in ("active", "generating") or self._session is None:
            return

        self._epoch += 1
        self._state = "stopping"
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

        try:
            await self._sink.close()
        except Exception as exc:
            _LOGGER.warning("Closing playback sink failed: %s", exc, exc_info=debug_enabled())

        self._session = self._session.model_copy(
            update={"is_active": False, "end_time": self._clock.now()}
        )
        self._state = "stopped"
        _LOGGER.info("Streaming session %s ended", self._session.id)
        self._emit("session_ended")

    async def reconfigure(self, generator: TrackGenerator) -> None:
        """Swap in a new generator, restarting the stream when one is live."""
        restart = self.is_streaming
        if restart:
            await self.stop()
        self._generator = generator
        self._home_settings = generator.settings
        if restart:
            await self.start()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def _run_timer(self) -> None:
        while True:
            await self._clock.sleep(self._settings.update_interval)
            await self.tick()

    async def tick(self) -> bool:
        """Run one update cycle.

        Returns False when the tick was skipped (no live session, or another
        tick still in flight) or failed; failures are reported through a
        ``streaming_error`` event and the session keeps running.
        """
        if self._state != "active" or self._tick_lock.locked():
            return False

        epoch = self._epoch
        async with self._tick_lock:
            try:
                await self._tick_once(epoch)
            except _SessionClosed:
                _LOGGER.info("Session stopped mid-tick; discarding in-flight result")
                return False
            except Exception as exc:
                if epoch != self._epoch:
                    _LOGGER.info("Ignoring failure of a tick from a stopped session: %s", exc)
                    return False
                if self._state == "generating":
                    self._state = "active"
                self._report(exc)
                return False
        return True

    async def _tick_once(self, epoch: int) -> None:
        with _stage("fetch"):
            batch = list(await self._fetch())
        self._ensure_live(epoch)
        if not batch:
            _LOGGER.info("Event source returned nothing; reusing the previous batch")
            batch = self._last_batch

        avg_cost, count = batch_activity(batch)
        if self._archiver is not None and avg_cost > self._settings.snapshot_cost_threshold:
            try:
                await self._snapshot(epoch)
            except StreamingError as exc:
                self._report(exc)
            self._ensure_live(epoch)

        if self._should_advance(avg_cost, count):
            await self._advance(batch, epoch)

        self._last_batch = batch
        self._previous_activity = (avg_cost, count)

    def _should_advance(self, avg_cost: float, count: int) -> bool:
        session = self._session
        assert session is not None and session.current_track is not None
        current = session.current_track
        elapsed = self._clock.now() - current.start_time
        if elapsed >= self._settings.advance_fraction * current.duration:
            return True
        previous_cost, previous_count = self._previous_activity
        threshold = self._settings.activity_change_threshold
        return (
            _relative_change(previous_cost, avg_cost) >= threshold
            or _relative_change(previous_count, count) >= threshold
        )

    async def _advance(self, batch: Sequence[SourceEvent], epoch: int) -> None:
        self._state = "generating"
        generator = self._generator
        evolution: EvolutionResult | None = None
        session = self._session
        assert session is not None

        if self._settings.evolve_configuration:
            minutes = (self._clock.now() - session.start_time) / 60.0
            with _stage("evolution"):
                evolution = evolve_settings(
                    generator.settings,
                    batch,
                    minutes,
                    self._entropy,
                    generator.derivation,
                    home=self._home_settings,
                )
                generator = generator.with_settings(evolution.settings)

        with _stage("synthesis"):
            track = await self._generate(generator, batch)
        self._ensure_live(epoch)

        outgoing = self._track
        assert outgoing is not None
        seconds = self._settings.crossfade_seconds
        self._emit(
            "crossfade_started",
            track=track,
            payload={"outgoing_id": outgoing.id, "seconds": seconds},
        )
        with _stage("playback"):
            await self._sink.crossfade(outgoing, track, seconds)
        self._ensure_live(epoch)

        # Commit everything at once.
        session = self._session
        assert session is not None and session.current_track is not None
        now = self._clock.now()
        played = max(0.0, now - session.current_track.start_time)
        self._generator = generator
        self._track = track
        self._session = session.model_copy(
            update={
                "current_track": self._current_track_for(track, now),
                "stats": session.stats.model_copy(
                    update={
                        "tracks_played": session.stats.tracks_played + 1,
                        "total_duration": session.stats.total_duration + played,
                    }
                ),
            }
        )
        self._state = "active"
        if evolution is not None:
            self._emit(
                "configuration_evolved",
                payload={
                    "bpm": evolution.bpm,
                    "activity_factor": evolution.activity_factor,
                    "session_minutes": evolution.session_minutes,
                    "settings": evolution.settings.model_dump(),
                },
            )
        _LOGGER.info("Now playing track %s", track.id)
        self._emit("new_track", track=track)

    # ------------------------------------------------------------------
    # Snapshots + listeners
    # ------------------------------------------------------------------

    async def create_snapshot_now(self) -> SnapshotReceipt:
        if self._session is None or not self._session.is_active or self._state not in (
            "active",
            "generating",
        ):
            raise SessionNotActiveError("No active streaming session")
        try:
            return await self._snapshot(self._epoch)
        except _SessionClosed:
            raise SessionNotActiveError("Streaming session ended during the snapshot") from None

    async def _snapshot(self, epoch: int) -> SnapshotReceipt:
        if self._archiver is None:
            raise StreamingError("No archiver configured", stage="snapshot")
        track = self._track
        assert track is not None
        try:
            receipt = await maybe_await(self._archiver.archive(track))
        except Exception as exc:
            raise StreamingError(f"Snapshot archive failed: {exc}", stage="snapshot") from exc
        self._ensure_current(epoch)

        session = self._session
        assert session is not None
        self._session = session.model_copy(
            update={"snapshot_ids": session.snapshot_ids + (receipt.id,)}
        )
        _LOGGER.info("Snapshot %s created for track %s", receipt.id, track.id)
        self._emit("snapshot_requested", track=track, receipt=receipt)
        return receipt

    def record_listeners(self, count: int) -> SessionStats:
        if count < 0:
            raise ValueError("listener count cannot be negative")
        session = self._session
        if session is None or not session.is_active:
            raise SessionNotActiveError("No active streaming session")

        stats = session.stats
        samples = stats.listener_samples + 1
        total = stats.total_listeners + count
        updated = stats.model_copy(
            update={
                "listener_samples": samples,
                "total_listeners": total,
                "average_listeners": total / samples,
                "peak_listeners": max(stats.peak_listeners, count),
            }
        )
        self._current_listeners = count
        self._session = session.model_copy(update={"stats": updated})
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch(self) -> Sequence[SourceEvent]:
        return await maybe_await(self._source.fetch_recent_events(self._settings.fetch_count))

    async def _generate(
        self, generator: TrackGenerator, batch: Sequence[SourceEvent]
    ) -> GeneratedTrack:
        if self._settings.offload_synthesis:
            return await asyncio.to_thread(generator.generate, batch)
        return generator.generate(batch)

    def _ensure_current(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise _SessionClosed()

    def _ensure_live(self, epoch: int) -> None:
        if epoch != self._epoch or self._state not in ("active", "generating"):
            raise _SessionClosed()

    @staticmethod
    def _current_track_for(track: GeneratedTrack, now: float) -> CurrentTrack:
        return CurrentTrack(
            music_id=track.id,
            start_time=now,
            duration=track.duration,
            source_event=track.source_event,
        )

    def _report(self, exc: Exception) -> None:
        error = (
            exc
            if isinstance(exc, StreamingError)
            else StreamingError(f"tick failed: {exc}", stage="tick")
        )
        _LOGGER.warning(
            "Streaming error during %s: %s", error.stage, error, exc_info=debug_enabled()
        )
        self._emit("streaming_error", error=error)

    def _emit(
        self,
        kind: EventKind,
        *,
        track: GeneratedTrack | None = None,
        error: Exception | None = None,
        receipt: SnapshotReceipt | None = None,
        payload: dict[str, object] | None = None,
    ) -> None:
        self.events.emit(
            SessionEvent(
                kind=kind,
                session=self._session,
                track=track,
                error=error,
                receipt=receipt,
                payload=payload,
            )
        )
