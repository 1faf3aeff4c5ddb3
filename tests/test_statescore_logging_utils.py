from __future__ import annotations

import logging
from pathlib import Path

import pytest

from statescore import logging_utils


def test_log_dir_follows_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path))
    assert logging_utils.get_log_dir() == tmp_path
    assert logging_utils.get_log_path() == tmp_path / "statescore.log"


def test_default_log_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(logging_utils.LOG_DIR_ENV, raising=False)
    assert logging_utils.get_log_dir().parts[-3:] == (".cache", "statescore", "logs")


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path / "logs"))
    try:
        raise RuntimeError("boom")
    except RuntimeError as exc:
        path = logging_utils.log_exception("compile", exc)
    assert path == tmp_path / "logs" / "statescore.log"
    text = path.read_text(encoding="utf-8")
    assert "compile failed: RuntimeError: boom" in text
    assert "Traceback" in text


def test_configure_logging_installs_file_handler(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path))
    logger = logging.getLogger("statescore")
    saved = list(logger.handlers)
    try:
        logging_utils.configure_logging(force=True)
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert [Path(h.baseFilename) for h in file_handlers] == [tmp_path / "statescore.log"]
        logging.getLogger("statescore.test").info("hello file")
        for handler in file_handlers:
            handler.flush()
        assert "hello file" in (tmp_path / "statescore.log").read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        for handler in saved:
            logger.addHandler(handler)


def test_level_prefixes() -> None:
    record = logging.LogRecord("statescore.x", logging.WARNING, __file__, 1, "careful", None, None)
    formatted = logging_utils._ConsoleEmojiFormatter("%(level_prefix)s %(message)s").format(record)
    assert formatted.endswith("careful")
    assert formatted.startswith(logging_utils._level_prefix(logging.WARNING))


def test_console_lines_drop_package_prefix() -> None:
    record = logging.LogRecord("statescore.engine", logging.INFO, __file__, 1, "ready", None, None)
    formatted = logging_utils._ConsoleEmojiFormatter(logging_utils._CONSOLE_FORMAT).format(record)
    assert formatted.endswith("engine: ready")
    foreign = logging.LogRecord("host.app", logging.INFO, __file__, 1, "ready", None, None)
    assert "host.app: ready" in logging_utils._ConsoleEmojiFormatter(logging_utils._CONSOLE_FORMAT).format(foreign)


def test_configure_logging_keeps_foreign_handlers(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path))
    logger = logging.getLogger("statescore")
    saved = list(logger.handlers)
    foreign = logging.NullHandler()
    logger.addHandler(foreign)
    try:
        logging_utils.configure_logging(force=True)
        logging_utils.configure_logging(force=True)
        assert foreign in logger.handlers
        ours = [h for h in logger.handlers if getattr(h, logging_utils._HANDLER_TAG, False)]
        assert sum(isinstance(h, logging.FileHandler) for h in ours) == 1
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            if handler is not foreign:
                handler.close()
        for handler in saved:
            logger.addHandler(handler)


def test_once_logger_warns_once_per_key(caplog: pytest.LogCaptureFixture) -> None:
    once = logging_utils.OnceLogger(logging.getLogger("statescore.test"))
    with caplog.at_level(logging.WARNING, logger="statescore.test"):
        assert once.warning("speed", "unknown %s", "speed") is True
        assert once.warning("speed", "unknown %s", "speed") is False
        assert once.warning("mood", "unknown %s", "mood") is True
    assert [r.getMessage() for r in caplog.records] == ["unknown speed", "unknown mood"]
    assert once.seen("speed")
    once.reset()
    assert not once.seen("speed")


def test_log_target_failure_writes_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path))
    try:
        raise ValueError("no musical clock")
    except ValueError as exc:
        path = logging_utils.log_target_failure(logging.getLogger("statescore.compiler"), "arena", "pure_data", exc)
    assert path == tmp_path / "statescore.log"
    assert "compile arena for pure_data failed: ValueError: no musical clock" in path.read_text(encoding="utf-8")
    assert any("Compile for pure_data failed" in r.getMessage() for r in caplog.records)
