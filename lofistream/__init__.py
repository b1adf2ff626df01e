from __future__ import annotations

from .audio import SAMPLE_RATE, WavInfo, decode_wav, encode_wav, parse_wav_header, save_track
from .clock import Clock, ManualClock, SystemClock
from .config import (
    DerivationSettings,
    EngineConfig,
    GeneratorIdentity,
    LofiSettings,
    StreamingSettings,
    load_config,
    parse_config,
)
from .derive import batch_activity, coefficient_of_variation, derive
from .entropy import EntropySource, FixedEntropy, SystemEntropy
from .errors import (
    AlreadyStreamingError,
    EmptyArtifactError,
    InvalidConfigError,
    InvalidInputError,
    LofiStreamError,
    PlaybackError,
    SessionNotActiveError,
    StreamingError,
)
from .events import EventBus, SessionEvent, Subscription
from .evolution import EvolutionResult, evolve_settings
from .logging_utils import configure_logging as _configure_logging
from .models import (
    CurrentTrack,
    GeneratedTrack,
    MusicParameters,
    Provenance,
    SessionStats,
    SnapshotReceipt,
    SourceEvent,
    StreamingSession,
    StreamingStats,
    TrackAttribute,
    TrackMetadata,
)
from .package import TrackGenerator, build_metadata, package
from .playback import BufferSink, DeviceSink
from .session import StreamingSessionManager
from .sources import DirectoryArchiver, MockEventSource, StaticEventSource
from .synth import MAX_DURATION_SECONDS, crossfade_buffers, synthesize, track_duration

__all__ = [
    "SAMPLE_RATE",
    "MAX_DURATION_SECONDS",
    "AlreadyStreamingError",
    "BufferSink",
    "Clock",
    "CurrentTrack",
    "DerivationSettings",
    "DeviceSink",
    "DirectoryArchiver",
    "EmptyArtifactError",
    "EngineConfig",
    "EntropySource",
    "EventBus",
    "EvolutionResult",
    "FixedEntropy",
    "GeneratedTrack",
    "GeneratorIdentity",
    "InvalidConfigError",
    "InvalidInputError",
    "LofiSettings",
    "LofiStreamError",
    "ManualClock",
    "MockEventSource",
    "MusicParameters",
    "PlaybackError",
    "Provenance",
    "SessionEvent",
    "SessionNotActiveError",
    "SessionStats",
    "SnapshotReceipt",
    "SourceEvent",
    "StaticEventSource",
    "StreamingError",
    "StreamingSession",
    "StreamingSessionManager",
    "StreamingSettings",
    "StreamingStats",
    "Subscription",
    "SystemClock",
    "SystemEntropy",
    "TrackAttribute",
    "TrackGenerator",
    "TrackMetadata",
    "WavInfo",
    "batch_activity",
    "build_metadata",
    "coefficient_of_variation",
    "crossfade_buffers",
    "decode_wav",
    "derive",
    "encode_wav",
    "evolve_settings",
    "load_config",
    "package",
    "parse_config",
    "parse_wav_header",
    "save_track",
    "synthesize",
    "track_duration",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
