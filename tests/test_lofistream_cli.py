import json
from pathlib import Path

import pytest

from lofistream import cli


@pytest.fixture(autouse=True)
def _log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOFISTREAM_LOG_DIR", str(tmp_path / "logs"))


def test_render_writes_track_and_sidecar(tmp_path: Path) -> None:
    output = tmp_path / "out" / "track.wav"

    code = cli.main(
        [
            "render",
            "--output",
            str(output),
            "--seed",
            "3",
            "--events",
            "4",
            "--max-duration",
            "0.2",
            "--time-bucket",
            "1",
        ]
    )

    assert code == 0
    assert output.read_bytes()[:4] == b"RIFF"
    sidecar = json.loads(output.with_suffix(".json").read_text(encoding="utf-8"))
    assert sidecar["parameters"]["time_bucket"] == 1
    assert sidecar["duration"] == pytest.approx(0.2)


def test_inspect_prints_header(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "track.wav"
    assert cli.main(["render", "--output", str(output), "--max-duration", "0.1"]) == 0

    assert cli.main(["inspect", str(output)]) == 0
    assert "sample_rate: 44100" in capsys.readouterr().out


def test_missing_file_returns_error_code(tmp_path: Path) -> None:
    assert cli.main(["inspect", str(tmp_path / "nope.wav")]) == 1


def test_bad_config_returns_error_code(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"lofi": {"bpm_range": [90, 10]}}), encoding="utf-8")
    assert cli.main(["render", "--config", str(config), "--output", str(tmp_path / "x.wav")]) == 1


def test_short_stream_session(tmp_path: Path) -> None:
    archive = tmp_path / "archive"
    code = cli.main(
        [
            "stream",
            "--duration",
            "0.05",
            "--interval",
            "10",
            "--max-duration",
            "0.2",
            "--seed",
            "1",
            "--archive-dir",
            str(archive),
        ]
    )
    assert code == 0


def test_render_error_mentions_exception(capsys: pytest.CaptureFixture[str]) -> None:
    cli.render_error("render", ValueError("nope"))
    out = capsys.readouterr().out
    assert "render failed" in out
    assert "ValueError: nope" in out
