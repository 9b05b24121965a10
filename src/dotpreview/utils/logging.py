"""Logging setup shared by the dotpreview host and its tests."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "get_logger", "get_log_path", "resolve_level"]

LOG_FILE_NAME = "dotpreview.log"
_DEFAULT_LOG_DIR = Path.home() / ".dotpreview" / "logs"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Third-party loggers that flood DEBUG output with transport chatter.
_CHATTY_LOGGERS: tuple[str, ...] = ("asyncio", "qasync", "httpx", "httpcore")

_active_log_path: Path | None = None


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send log records to a rotating file and, optionally, to stderr.

    ``level`` accepts a number or a level name. When omitted,
    ``DOTPREVIEW_LOG_LEVEL`` is consulted before falling back to ``INFO``.
    The log directory defaults to ``~/.dotpreview/logs`` and can be moved with
    ``DOTPREVIEW_LOG_DIR``. Repeated calls are no-ops unless ``force`` is set.
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    numeric_level = resolve_level(level)
    directory = Path(log_dir or os.environ.get("DOTPREVIEW_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    _active_log_path = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the file the last :func:`setup_logging` call writes to."""

    return _active_log_path


def resolve_level(level: int | str | None) -> int:
    """Normalize a level name/number, honoring ``DOTPREVIEW_LOG_LEVEL``."""

    if level is None:
        level = os.environ.get("DOTPREVIEW_LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO
