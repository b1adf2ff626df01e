import hashlib

import numpy as np
import pytest

from lofistream.config import EngineConfig, GeneratorIdentity, LofiSettings
from lofistream.entropy import FixedEntropy
from lofistream.errors import EmptyArtifactError, InvalidInputError
from lofistream.models import MusicParameters, SourceEvent
from lofistream.package import TrackGenerator, build_metadata, network_activity, package


def _events(count: int, cost: float = 2e9) -> list[SourceEvent]:
    return [
        SourceEvent.create(
            sequence=18_000_000,
            parent_hash=f"0xparent{index}",
            timestamp=1_700_000_000,
            cost=cost,
            origin=f"0xorigin{index}",
            destination="0xdest",
            value=index,
        )
        for index in range(count)
    ]


def _params(**overrides) -> MusicParameters:
    base = {
        "tempo": 78.4,
        "swing": 0.655,
        "key": "Eb",
        "scale": "dorian",
        "chord_progression": ("Cmaj7", "Am7"),
        "melody_pattern": (0, 2, 4),
        "note_durations": (0.5,),
        "volume": 0.5,
        "reverb": 0.6,
        "delay": 0.25,
        "distortion": 0.1,
        "seed": "lofi_deadbeef_3_abcd",
    }
    base.update(overrides)
    return MusicParameters(**base)


def test_package_rejects_empty_samples() -> None:
    with pytest.raises(EmptyArtifactError):
        package(_events(1), _params(), np.zeros((0, 2), dtype=np.int16), now=1.0)


def test_package_rejects_missing_events() -> None:
    with pytest.raises(InvalidInputError):
        package([], _params(), np.ones((10, 2), dtype=np.int16), now=1.0)


def test_package_id_and_provenance() -> None:
    events = _events(2)
    samples = np.ones((4_410, 2), dtype=np.int16)

    track = package(events, _params(), samples, now=1_700_000_000.1234)

    expected = hashlib.sha256(
        f"lofi_{events[0].content_hash}-lofi_deadbeef_3_abcd-1700000000123".encode()
    ).hexdigest()[:16]
    assert track.id == expected
    assert track.duration == pytest.approx(0.1)
    assert track.frame_count == 4_410
    assert track.event_count == 2
    assert track.wav[:4] == b"RIFF"
    assert len(track.wav) == 44 + 4_410 * 4
    assert track.provenance.source_hash == events[0].content_hash
    assert track.provenance.algorithm == GeneratorIdentity().algorithm


def test_metadata_attributes() -> None:
    events = _events(10)
    metadata = build_metadata(
        events, _params(), 12.34, LofiSettings(vinyl_crackle=False), GeneratorIdentity()
    )
    traits = {attr.trait_type: attr.value for attr in metadata.attributes}

    assert len(metadata.attributes) == 15
    assert metadata.name == "LoFi Chain Vibes #18000000"
    assert traits["Genre"] == "LoFi Hip Hop"
    assert traits["Block Number"] == 18_000_000
    assert traits["Event Count"] == 10
    assert traits["BPM"] == 78
    assert traits["Key"] == "Eb"
    assert traits["Time Signature"] == "4/4"
    assert traits["Duration"] == "12.3s"
    assert traits["Swing"] == "65.5%"
    assert traits["Vinyl Crackle"] == "No"
    assert traits["Jazz Chords"] == "Yes"
    assert traits["Network Activity"] == "Medium"
    assert traits["Generation Date"] == "2023-11-14T22:13:20+00:00"
    assert traits["Data Hash"] == events[0].content_hash[:16]
    assert metadata.background_color == "#2D1B69"
    assert metadata.external_url is None
    assert metadata.animation_url is None
    assert "external_url" not in metadata.to_json_dict()


def test_metadata_urls_follow_identity() -> None:
    events = _events(1)
    identity = GeneratorIdentity(
        external_base_url="https://tracks.example/",
        animation_base_url="https://audio.example",
    )

    metadata = build_metadata(events, _params(melody_pattern=(3,)), 1.0, LofiSettings(), identity)

    assert metadata.external_url == f"https://tracks.example/{events[0].content_hash}"
    assert metadata.animation_url == "https://audio.example/lofi_deadbeef_3_abcd"
    assert metadata.background_color == "#FF6B6B"


def test_network_activity_thresholds() -> None:
    assert network_activity(1) == "Low"
    assert network_activity(5) == "Low"
    assert network_activity(6) == "Medium"
    assert network_activity(10) == "Medium"
    assert network_activity(11) == "High"


def test_track_generator_generates_capped_track() -> None:
    generator = TrackGenerator(entropy=FixedEntropy(now=1_700_000_000.0), max_duration=0.25)

    track = generator.generate(_events(3), time_bucket=0)

    assert track.duration == pytest.approx(0.25)
    assert track.created_at == 1_700_000_000.0
    assert track.samples.dtype == np.int16
    assert track.parameters.time_bucket == 0
    assert 70.0 <= track.parameters.tempo <= 90.0


def test_with_settings_keeps_identity_and_entropy() -> None:
    config = EngineConfig(identity=GeneratorIdentity(collection_name="Night Shift"))
    generator = TrackGenerator.from_config(
        config, entropy=FixedEntropy(now=5.0), max_duration=0.1
    )

    slower = generator.with_settings(LofiSettings(bpm_range=(60.0, 62.0)))
    track = slower.generate(_events(1), time_bucket=0)

    assert slower.settings.bpm_range == (60.0, 62.0)
    assert generator.settings.bpm_range == (70.0, 90.0)
    assert slower.derivation == generator.derivation
    assert track.metadata.name == "Night Shift #18000000"
    assert 60.0 <= track.parameters.tempo <= 62.0
