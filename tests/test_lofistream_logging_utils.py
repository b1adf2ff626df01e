import logging
from pathlib import Path

import pytest

from lofistream import logging_utils


def test_log_dir_uses_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOFISTREAM_LOG_DIR", str(tmp_path))
    assert logging_utils.get_log_dir() == tmp_path
    assert logging_utils.get_log_path() == tmp_path / "lofistream.log"


def test_debug_enabled_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOFISTREAM_DEBUG", raising=False)
    assert logging_utils.debug_enabled() is False
    monkeypatch.setenv("LOFISTREAM_DEBUG", "1")
    assert logging_utils.debug_enabled() is True


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOFISTREAM_LOG_DIR", str(tmp_path))
    try:
        raise RuntimeError("render broke")
    except RuntimeError as exc:
        path = logging_utils.log_exception("render", exc)

    assert path == tmp_path / "lofistream.log"
    text = path.read_text(encoding="utf-8")
    assert "render failed: RuntimeError: render broke" in text
    assert "Traceback" in text


def test_configure_logging_adds_file_handler(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LOFISTREAM_LOG_DIR", str(tmp_path))
    logger = logging.getLogger("lofistream")

    logging_utils.configure_logging(force=True)
    try:
        file_handlers = [
            handler for handler in logger.handlers if isinstance(handler, logging.FileHandler)
        ]
        assert [Path(handler.baseFilename) for handler in file_handlers] == [
            tmp_path / "lofistream.log"
        ]
        assert logger.propagate is True
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
