from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from rich.console import Console

from .audio import SAMPLE_RATE, parse_wav_header, save_track
from .config import EngineConfig, load_config
from .entropy import SystemEntropy
from .events import SessionEvent
from .logging_utils import configure_logging, debug_enabled, log_exception
from .package import TrackGenerator
from .playback import BufferSink, DeviceSink, PlaybackSink
from .session import StreamingSessionManager
from .sources import DirectoryArchiver, MockEventSource
from .synth import MAX_DURATION_SECONDS

_LOGGER = logging.getLogger("lofistream.cli")
_CONSOLE = Console()


def render_error(context: str, exc: BaseException) -> None:
    _CONSOLE.print(f"[bold red]{context} failed:[/bold red] {type(exc).__name__}: {exc}")


def _load(path: str | None) -> EngineConfig:
    return load_config(path) if path else EngineConfig()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lofistream")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Generate one track from mock events.")
    render.add_argument("--output", type=str, default="lofi.wav")
    render.add_argument("--events", type=int, default=10)
    render.add_argument("--seed", type=int, default=None)
    render.add_argument("--max-duration", type=float, default=MAX_DURATION_SECONDS)
    render.add_argument("--time-bucket", type=int, default=None)
    render.add_argument("--config", type=str, default=None)

    stream = sub.add_parser("stream", help="Run a streaming session on mock events.")
    stream.add_argument("--duration", type=float, default=60.0)
    stream.add_argument("--interval", type=float, default=None)
    stream.add_argument("--max-duration", type=float, default=MAX_DURATION_SECONDS)
    stream.add_argument("--seed", type=int, default=None)
    stream.add_argument("--archive-dir", type=str, default=None)
    stream.add_argument("--config", type=str, default=None)
    stream.add_argument("--play", action="store_true", help="Play through the audio device.")

    inspect = sub.add_parser("inspect", help="Print the header of a WAVE file.")
    inspect.add_argument("path", type=str)
    return parser


def _cmd_render(args: argparse.Namespace) -> int:
    config = _load(args.config)
    source = MockEventSource(args.seed)
    generator = TrackGenerator.from_config(
        config, entropy=SystemEntropy(args.seed), max_duration=args.max_duration
    )
    events = source.fetch_recent_events(args.events)
    with _CONSOLE.status("Rendering lofi track"):
        track = generator.generate(events, time_bucket=args.time_bucket)
    path = save_track(args.output, track)
    params = track.parameters
    _CONSOLE.print(
        f"Wrote [bold]{track.metadata.name}[/bold] to {path} "
        f"({track.duration:.1f}s, {params.key} {params.scale}, {params.tempo:.0f} bpm, "
        f"sr={SAMPLE_RATE})"
    )
    return 0


def _print_event(event: SessionEvent) -> None:
    match event.kind:
        case "new_track" | "session_started" if event.track is not None:
            params = event.track.parameters
            _CONSOLE.print(
                f"[green]{event.kind}[/green] {event.track.id} "
                f"{params.key} {params.scale} {params.tempo:.0f} bpm ({event.track.duration:.1f}s)"
            )
        case "snapshot_requested" if event.receipt is not None:
            _CONSOLE.print(f"[cyan]snapshot[/cyan] {event.receipt.location_uri}")
        case "streaming_error":
            _CONSOLE.print(f"[red]streaming_error[/red] {event.error}")
        case _:
            _CONSOLE.print(f"[dim]{event.kind}[/dim]")


async def _run_stream(args: argparse.Namespace) -> int:
    config = _load(args.config)
    streaming = config.streaming
    if args.interval is not None:
        streaming = streaming.model_copy(update={"update_interval": args.interval})
    sink: PlaybackSink = DeviceSink() if args.play else BufferSink()
    manager = StreamingSessionManager(
        MockEventSource(args.seed),
        TrackGenerator.from_config(config, max_duration=args.max_duration),
        archiver=DirectoryArchiver(args.archive_dir) if args.archive_dir else None,
        sink=sink,
        settings=streaming,
    )
    manager.events.subscribe_all(_print_event)
    with _CONSOLE.status("Starting stream"):
        await manager.start()
    try:
        await asyncio.sleep(args.duration)
    finally:
        await manager.stop()
    stats = manager.stats()
    _CONSOLE.print(
        f"Session over: {stats.tracks_played} tracks, {stats.snapshots_created} snapshots, "
        f"{stats.session_duration:.1f}s"
    )
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    info = parse_wav_header(Path(args.path).read_bytes())
    for field, value in info.model_dump().items():
        _CONSOLE.print(f"{field}: {value}")
    _CONSOLE.print(f"duration: {info.duration:.2f}s")
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        match args.command:
            case "render":
                return _cmd_render(args)
            case "stream":
                return asyncio.run(_run_stream(args))
            case "inspect":
                return _cmd_inspect(args)
            case _:
                parser.print_help()
                return 1
    except Exception as exc:
        _LOGGER.warning("lofistream CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("lofistream CLI", exc)
        render_error("lofistream CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
