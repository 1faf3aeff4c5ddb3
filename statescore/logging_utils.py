"""Logging setup shared by the library, the engine and the CLI.

``configure_logging`` attaches two handlers to the ``statescore`` logger: a
short emoji-prefixed console line and a timestamped log file under
``get_log_dir()``. Failures that carry a traceback (CLI errors, targets that
fail inside ``compile_all``) are appended to the same file through
``log_exception``. ``OnceLogger`` keeps hot paths such as engine ticks from
repeating the same warning.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Hashable

_LOGGER = logging.getLogger("statescore.logging")
ROOT_LOGGER_NAME = "statescore"
LOG_DIR_ENV = "STATESCORE_LOG_DIR"
DEBUG_ENV = "STATESCORE_DEBUG"
_LOG_FILE = "statescore.log"
_HANDLER_TAG = "_statescore_handler"
_logging_configured = False
_CONSOLE_FORMAT = "%(level_prefix)s %(short_name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "🐛",
    logging.INFO: "ℹ️",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


def _level_prefix(levelno: int) -> str:
    return _LEVEL_PREFIXES.get(levelno, "")


def _short_name(name: str) -> str:
    prefix = f"{ROOT_LOGGER_NAME}."
    return name[len(prefix) :] if name.startswith(prefix) else name


class _ConsoleEmojiFormatter(logging.Formatter):
    """Console lines read ``⚠️ engine: ...`` rather than the full dotted name."""

    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _level_prefix(record.levelno)
        record.short_name = _short_name(record.name)
        return super().format(record)


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "statescore" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def _tagged(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.__stderr__)
    handler.setLevel(logging.DEBUG if os.environ.get(DEBUG_ENV) else logging.INFO)
    handler.setFormatter(_ConsoleEmojiFormatter(_CONSOLE_FORMAT))
    return _tagged(handler)


def _file_handler() -> logging.Handler | None:
    try:
        get_log_dir().mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
    return _tagged(handler)


def configure_logging(*, force: bool = False) -> None:
    """Install the statescore handlers once; ``force`` rebuilds them.

    The console handler is skipped when the host application already configured
    the root logger, so its own handlers decide how statescore lines look.
    """

    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()

    if force or not logging.getLogger().handlers:
        logger.addHandler(_console_handler())
    file_handler = _file_handler()
    if file_handler is not None:
        logger.addHandler(file_handler)

    # Allow app/test harness handlers to capture logs.
    logger.propagate = True
    _logging_configured = True


def _failure_block(context: str, exc: BaseException) -> str:
    header = f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}\n"
    return header + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) + "\n"


def log_exception(context: str, exc: BaseException) -> Path | None:
    """Append ``exc`` with its traceback to the log file; returns the file, or None."""

    path = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(_failure_block(context, exc))
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
    return path


def log_target_failure(logger: logging.Logger, graph_id: str, target: str, exc: BaseException) -> Path | None:
    """One console warning per failed compile target; the traceback goes to the file."""

    logger.warning("Compile for %s failed: %s", target, exc)
    return log_exception(f"compile {graph_id} for {target}", exc)


class OnceLogger:
    """Emit each warning at most once per key for the lifetime of the instance."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._seen: set[Hashable] = set()
        self._lock = threading.Lock()

    def warning(self, key: Hashable, msg: str, *args: object) -> bool:
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
        self._logger.warning(msg, *args)
        return True

    def seen(self, key: Hashable) -> bool:
        return key in self._seen

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()
