from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from utils.paths import LOG_DIR

_LOG_CONFIGURED = False

FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | pid=%(process)d tid=%(threadName)s | %(message)s"
)


def setup_logging(
    level: str | int = "INFO",
    log_dir: Path | None = None,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Install the file and console handlers once per process.

    The file keeps everything from DEBUG up; the console shows ``level``.
    """
    global _LOG_CONFIGURED
    root = logging.getLogger()
    if _LOG_CONFIGURED:
        return root

    log_dir = Path(log_dir) if log_dir else LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / "app.log", maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FORMAT))

    console_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(console_level, int):
        # getLevelName returns "Level X" for unknown names
        console_level = logging.INFO

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(console_level)
    stream_handler.setFormatter(logging.Formatter(FORMAT))

    root.setLevel(logging.DEBUG)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    root.info("Log file: %s", file_handler.baseFilename)
    _LOG_CONFIGURED = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for the application."""
    if not _LOG_CONFIGURED:
        setup_logging()
    return logging.getLogger(name)
