import asyncio
import threading
from pathlib import Path
from typing import Any

import pytest

from lofistream.clock import ManualClock
from lofistream.config import LofiSettings, StreamingSettings
from lofistream.entropy import FixedEntropy
from lofistream.errors import AlreadyStreamingError, SessionNotActiveError, StreamingError
from lofistream.events import SessionEvent
from lofistream.models import GeneratedTrack, SnapshotReceipt, SourceEvent
from lofistream.package import TrackGenerator
from lofistream.playback import BufferSink
from lofistream.session import StreamingSessionManager
from lofistream.sources import DirectoryArchiver, StaticEventSource


def _batch(cost: float = 1e9, count: int = 3, start: int = 100) -> list[SourceEvent]:
    return [
        SourceEvent.create(
            sequence=start + index,
            parent_hash="0xparent",
            timestamp=1_700_000_000 + index,
            cost=cost,
            origin="0xorigin",
            destination="0xdest",
            value=index,
        )
        for index in range(count)
    ]


class _Harness:
    def __init__(
        self,
        batches: list[Any],
        *,
        archiver: Any = None,
        settings: StreamingSettings | None = None,
        source: StaticEventSource | None = None,
        sink: BufferSink | None = None,
    ) -> None:
        self.clock = ManualClock(1_000.0)
        self.source = source or StaticEventSource(batches)
        self.sink = sink or BufferSink()
        generator = TrackGenerator(
            entropy=FixedEntropy(now=1.7e9, values=(0.1, 0.2, 0.3, 0.4, 0.5)),
            max_duration=1.0,
        )
        self.manager = StreamingSessionManager(
            self.source,
            generator,
            archiver=archiver,
            sink=self.sink,
            clock=self.clock,
            entropy=FixedEntropy(now=1.7e9),
            settings=settings or StreamingSettings(offload_synthesis=False),
        )
        self.events: list[SessionEvent] = []
        self.manager.events.subscribe_all(self.events.append)

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]

    def errors(self) -> list[StreamingError]:
        return [
            event.error
            for event in self.events
            if event.kind == "streaming_error" and isinstance(event.error, StreamingError)
        ]


class _StubArchiver:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.archived: list[str] = []

    def archive(self, track: GeneratedTrack) -> SnapshotReceipt:
        if self.fail:
            raise RuntimeError("archive offline")
        self.archived.append(track.id)
        return SnapshotReceipt(id=f"snap_{len(self.archived)}", location_uri="memory://snap")


@pytest.mark.asyncio
async def test_start_opens_session_with_first_track() -> None:
    harness = _Harness([_batch()])

    session = await harness.manager.start()
    try:
        assert session.is_active
        assert session.id == "session_1000000_iiiiiiiii"
        assert session.start_time == 1_000.0
        assert session.stats.tracks_played == 1
        assert session.current_track is not None
        assert session.current_track.duration == pytest.approx(1.0)
        assert harness.manager.state == "active"
        assert harness.kinds() == ["session_started"]
        assert len(harness.sink.played) == 1
        assert harness.manager.current_track is harness.sink.current
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_second_start_is_rejected_without_touching_session() -> None:
    harness = _Harness([_batch()])
    session = await harness.manager.start()
    try:
        harness.clock.advance(3.0)
        with pytest.raises(AlreadyStreamingError):
            await harness.manager.start()
        assert harness.manager.session is not None
        assert harness.manager.session.id == session.id
        assert harness.manager.session.start_time == 1_000.0
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_idle_manager_refuses_session_operations() -> None:
    harness = _Harness([_batch()])

    assert await harness.manager.tick() is False
    with pytest.raises(SessionNotActiveError):
        await harness.manager.create_snapshot_now()
    with pytest.raises(SessionNotActiveError):
        harness.manager.record_listeners(3)

    stats = harness.manager.stats()
    assert stats.is_active is False
    assert stats.tracks_played == 0
    assert harness.source.fetch_count == 0


@pytest.mark.asyncio
async def test_tick_advances_near_end_of_track() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    first = harness.manager.current_track
    try:
        harness.clock.advance(0.95)
        assert await harness.manager.tick() is True

        session = harness.manager.session
        assert session is not None and session.current_track is not None
        assert session.stats.tracks_played == 2
        assert session.stats.total_duration == pytest.approx(0.95)
        assert session.current_track.start_time == pytest.approx(1_000.95)
        assert harness.manager.current_track is not first
        assert len(harness.sink.mixes) == 1
        assert harness.sink.mixes[0].shape == (88_200, 2)
        assert harness.kinds() == [
            "session_started",
            "crossfade_started",
            "configuration_evolved",
            "new_track",
        ]
        crossfade = harness.events[1]
        assert crossfade.payload == {"outgoing_id": first.id, "seconds": 2.0}
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_tick_keeps_track_when_nothing_changed() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    try:
        harness.clock.advance(0.5)
        assert await harness.manager.tick() is True

        session = harness.manager.session
        assert session is not None
        assert session.stats.tracks_played == 1
        assert harness.sink.mixes == []
        assert harness.source.fetch_count == 2
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_activity_change_triggers_advance() -> None:
    harness = _Harness([_batch(cost=1e9), _batch(cost=2e9)])
    await harness.manager.start()
    try:
        assert await harness.manager.tick() is True
        session = harness.manager.session
        assert session is not None
        assert session.stats.tracks_played == 2
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_event_count_change_triggers_advance() -> None:
    harness = _Harness([_batch(count=4), _batch(count=2)])
    await harness.manager.start()
    try:
        assert await harness.manager.tick() is True
        assert harness.manager.stats().tracks_played == 2
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_configuration_evolves_on_advance() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    try:
        harness.clock.advance(0.95)
        await harness.manager.tick()

        evolved = [event for event in harness.events if event.kind == "configuration_evolved"]
        assert len(evolved) == 1
        payload = evolved[0].payload
        assert payload is not None
        assert 70.0 <= payload["bpm"] <= 90.0
        low, high = harness.manager.settings.bpm_range
        assert high - low == pytest.approx(10.0)
        assert payload["settings"]["bpm_range"] == (low, high)
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_evolution_can_be_disabled() -> None:
    harness = _Harness(
        [_batch()],
        settings=StreamingSettings(offload_synthesis=False, evolve_configuration=False),
    )
    await harness.manager.start()
    try:
        harness.clock.advance(0.95)
        assert await harness.manager.tick() is True
        assert "configuration_evolved" not in harness.kinds()
        assert harness.manager.settings == LofiSettings()
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_expensive_batch_requests_snapshot() -> None:
    archiver = _StubArchiver()
    harness = _Harness([_batch(cost=6e10)], archiver=archiver)
    await harness.manager.start()
    try:
        assert await harness.manager.tick() is True

        session = harness.manager.session
        assert session is not None
        assert session.snapshot_ids == ("snap_1",)
        assert archiver.archived == [session.current_track.music_id]
        snapshot = [event for event in harness.events if event.kind == "snapshot_requested"]
        assert snapshot[0].receipt is not None
        assert snapshot[0].receipt.id == "snap_1"
        assert harness.manager.stats().snapshots_created == 1
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_cheap_batch_skips_snapshot() -> None:
    archiver = _StubArchiver()
    harness = _Harness([_batch(cost=1e9)], archiver=archiver)
    await harness.manager.start()
    try:
        await harness.manager.tick()
        assert archiver.archived == []
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_archive_failure_is_reported_and_session_continues() -> None:
    harness = _Harness([_batch(cost=6e10)], archiver=_StubArchiver(fail=True))
    await harness.manager.start()
    try:
        assert await harness.manager.tick() is True

        errors = harness.errors()
        assert len(errors) == 1
        assert errors[0].stage == "snapshot"
        session = harness.manager.session
        assert session is not None
        assert session.is_active
        assert session.snapshot_ids == ()
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_fetch_failure_emits_error_and_keeps_streaming() -> None:
    harness = _Harness([_batch(), RuntimeError("rpc down")])
    await harness.manager.start()
    try:
        harness.clock.advance(0.95)
        assert await harness.manager.tick() is False

        errors = harness.errors()
        assert [error.stage for error in errors] == ["fetch"]
        assert "rpc down" in str(errors[0])
        assert harness.manager.is_streaming
        assert harness.manager.stats().tracks_played == 1
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_synthesis_failure_leaves_current_track_untouched(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    first = harness.manager.current_track

    def broken(self: TrackGenerator, events: Any, *, time_bucket: int | None = None) -> Any:
        raise RuntimeError("synth exploded")

    monkeypatch.setattr(TrackGenerator, "generate", broken)
    try:
        harness.clock.advance(0.95)
        assert await harness.manager.tick() is False

        assert [error.stage for error in harness.errors()] == ["synthesis"]
        assert harness.manager.state == "active"
        assert harness.manager.current_track is first
        assert harness.manager.stats().tracks_played == 1
        assert harness.sink.mixes == []
        assert harness.manager.settings == LofiSettings()
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_empty_batch_reuses_previous_batch() -> None:
    harness = _Harness([_batch(), []])
    await harness.manager.start()
    try:
        harness.clock.advance(0.2)
        assert await harness.manager.tick() is True
        assert harness.manager.stats().tracks_played == 1
        assert harness.errors() == []
        assert harness.source.fetch_count == 2
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_start_failure_resets_state_and_allows_retry() -> None:
    harness = _Harness([RuntimeError("boom"), _batch()])

    with pytest.raises(StreamingError) as excinfo:
        await harness.manager.start()
    assert excinfo.value.stage == "start"
    assert harness.manager.state == "idle"
    assert harness.manager.session is None

    session = await harness.manager.start()
    try:
        assert session.is_active
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_start_with_empty_source_fails() -> None:
    harness = _Harness([[]])
    with pytest.raises(StreamingError):
        await harness.manager.start()
    assert harness.manager.state == "idle"


@pytest.mark.asyncio
async def test_stop_is_idempotent() -> None:
    harness = _Harness([_batch()])
    await harness.manager.stop()
    assert harness.kinds() == []

    await harness.manager.start()
    harness.clock.advance(12.0)
    await harness.manager.stop()
    await harness.manager.stop()

    session = harness.manager.session
    assert session is not None
    assert session.is_active is False
    assert session.end_time == 1_012.0
    assert harness.kinds().count("session_ended") == 1
    assert harness.sink.closed
    stats = harness.manager.stats()
    assert stats.is_active is False
    assert stats.session_duration == pytest.approx(12.0)
    assert await harness.manager.tick() is False


@pytest.mark.asyncio
async def test_manager_can_restart_after_stop() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    await harness.manager.stop()

    session = await harness.manager.start()
    try:
        assert session.is_active
        assert harness.manager.state == "active"
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_record_listeners_tracks_average_and_peak() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    try:
        for count in (3, 7, 2):
            stats = harness.manager.record_listeners(count)

        assert stats.total_listeners == 12
        assert stats.listener_samples == 3
        assert stats.average_listeners == pytest.approx(4.0)
        assert stats.peak_listeners == 7
        assert harness.manager.stats().current_listeners == 2
        with pytest.raises(ValueError):
            harness.manager.record_listeners(-1)
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_timer_drives_ticks() -> None:
    harness = _Harness(
        [_batch()], settings=StreamingSettings(offload_synthesis=False, update_interval=5.0)
    )
    await harness.manager.start()
    try:
        for _ in range(3):
            await asyncio.sleep(0)
        assert harness.clock.pending_sleepers == 1

        harness.clock.advance(5.0)
        for _ in range(10):
            await asyncio.sleep(0)

        assert harness.source.fetch_count == 2
        assert harness.manager.stats().tracks_played == 2
        assert harness.clock.pending_sleepers == 1
    finally:
        await harness.manager.stop()
    assert harness.clock.pending_sleepers == 0


@pytest.mark.asyncio
async def test_stop_during_generation_discards_result(monkeypatch: pytest.MonkeyPatch) -> None:
    harness = _Harness([_batch()], settings=StreamingSettings(offload_synthesis=True))
    await harness.manager.start()

    entered = threading.Event()
    release = threading.Event()
    original = TrackGenerator.generate

    def gated(
        self: TrackGenerator, events: Any, *, time_bucket: int | None = None
    ) -> GeneratedTrack:
        entered.set()
        release.wait(5.0)
        return original(self, events, time_bucket=time_bucket)

    monkeypatch.setattr(TrackGenerator, "generate", gated)
    harness.clock.advance(0.95)
    tick = asyncio.create_task(harness.manager.tick())
    assert await asyncio.to_thread(entered.wait, 5.0)

    assert harness.manager.state == "generating"
    assert await harness.manager.tick() is False

    await harness.manager.stop()
    release.set()
    assert await tick is False

    session = harness.manager.session
    assert session is not None
    assert session.is_active is False
    assert session.stats.tracks_played == 1
    assert "new_track" not in harness.kinds()
    assert harness.sink.mixes == []
    assert harness.manager.state == "stopped"


@pytest.mark.asyncio
async def test_listener_failure_does_not_break_session() -> None:
    harness = _Harness([_batch()])

    def broken(event: SessionEvent) -> None:
        raise RuntimeError("listener exploded")

    harness.manager.events.subscribe("session_started", broken)
    session = await harness.manager.start()
    try:
        assert session.is_active
        assert harness.kinds() == ["session_started"]
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_manual_snapshot_without_archiver_fails() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    try:
        with pytest.raises(StreamingError) as excinfo:
            await harness.manager.create_snapshot_now()
        assert excinfo.value.stage == "snapshot"
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_directory_archiver_snapshot(tmp_path: Path) -> None:
    harness = _Harness([_batch()], archiver=DirectoryArchiver(tmp_path))
    await harness.manager.start()
    try:
        receipt = await harness.manager.create_snapshot_now()

        track = harness.manager.current_track
        assert track is not None
        assert receipt.id == f"snapshot_{track.id}"
        assert receipt.location_uri.startswith("file://")
        assert (tmp_path / f"{track.id}.wav").read_bytes() == track.wav
        assert (tmp_path / f"{track.id}.json").exists()
        session = harness.manager.session
        assert session is not None
        assert session.snapshot_ids == (receipt.id,)
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_reconfigure_restarts_live_stream() -> None:
    harness = _Harness([_batch()])
    await harness.manager.start()
    slower = TrackGenerator(
        LofiSettings(bpm_range=(60.0, 65.0)),
        entropy=FixedEntropy(now=1.7e9),
        max_duration=1.0,
    )
    try:
        await harness.manager.reconfigure(slower)

        assert harness.manager.is_streaming
        assert harness.manager.settings.bpm_range == (60.0, 65.0)
        assert harness.kinds() == ["session_started", "session_ended", "session_started"]
        track = harness.manager.current_track
        assert track is not None
        assert 60.0 <= track.parameters.tempo <= 65.0
    finally:
        await harness.manager.stop()


class _GatedSink(BufferSink):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def crossfade(
        self, outgoing: GeneratedTrack, incoming: GeneratedTrack, seconds: float
    ) -> None:
        self.entered.set()
        await self.release.wait()
        await super().crossfade(outgoing, incoming, seconds)


class _GatedSource(StaticEventSource):
    def __init__(self, batches: list[Any]) -> None:
        super().__init__(batches)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_recent_events(self, count: int) -> list[SourceEvent]:
        self.entered.set()
        await self.release.wait()
        return await super().fetch_recent_events(count)


@pytest.mark.asyncio
async def test_tick_from_replaced_session_does_not_commit() -> None:
    sink = _GatedSink()
    harness = _Harness([_batch()], sink=sink)
    await harness.manager.start()

    harness.clock.advance(0.95)
    tick = asyncio.create_task(harness.manager.tick())
    await sink.entered.wait()

    faster = TrackGenerator(
        LofiSettings(bpm_range=(120.0, 130.0)),
        entropy=FixedEntropy(now=1.7e9),
        max_duration=1.0,
    )
    await harness.manager.reconfigure(faster)
    session = harness.manager.session
    track = harness.manager.current_track
    assert session is not None and session.is_active

    sink.release.set()
    try:
        assert await tick is False

        assert harness.manager.state == "active"
        assert harness.manager.session is session
        assert harness.manager.current_track is track
        assert harness.manager.settings.bpm_range == (120.0, 130.0)
        assert session.stats.tracks_played == 1
        assert "new_track" not in harness.kinds()
        assert harness.errors() == []
    finally:
        await harness.manager.stop()


@pytest.mark.asyncio
async def test_stop_while_starting_cancels_the_start() -> None:
    source = _GatedSource([_batch()])
    harness = _Harness([], source=source)

    starting = asyncio.create_task(harness.manager.start())
    await source.entered.wait()
    assert harness.manager.state == "starting"

    await harness.manager.stop()
    source.release.set()
    with pytest.raises(StreamingError) as excinfo:
        await starting
    assert excinfo.value.stage == "start"

    assert harness.manager.state == "stopped"
    assert harness.manager.session is None
    assert harness.sink.played == []
    assert harness.sink.closed
    assert "session_started" not in harness.kinds()
    assert harness.clock.pending_sleepers == 0

    session = await harness.manager.start()
    try:
        assert session.is_active
        assert harness.manager.state == "active"
    finally:
        await harness.manager.stop()
