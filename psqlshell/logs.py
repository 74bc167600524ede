"""Per-session log files for the ``psqlshell`` logger tree."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path

LOGGER_NAME = "psqlshell"
LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(threadName)s] %(levelname)-5s %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def session_log_path(log_dir: Path, *, now: datetime | None = None, session_id: str | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    suffix = session_id or uuid.uuid4().hex[:8]
    return log_dir / f"psqlshell-{stamp}_{suffix}.log"


def configure_session_logging(log_dir: Path, *, level: int = logging.INFO) -> Path:
    """Attach a fresh file handler to the package logger and return its path.

    The package logger stops propagating so nothing reaches the terminal.
    Handlers from an earlier session in the same process are replaced.
    """

    log_dir.mkdir(parents=True, exist_ok=True)
    path = session_log_path(log_dir)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.info("Session logging started", extra={"log_file": str(path)})
    return path


__all__ = ["LOGGER_NAME", "configure_session_logging", "session_log_path"]
