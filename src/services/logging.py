"""Logging setup for the dues server.

Every record goes to stdout and to a size-rotated UTF-8 log file. The level
comes from LOG_LEVEL (INFO when unset or unknown); DEBUG also shows the
bank notifications the parser could not read.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotate at 5 MB, keep five old files
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Library loggers held at WARNING or above
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "uvicorn.access")


def get_log_level() -> int:
    """Level named by LOG_LEVEL, INFO if unset or not a standard level name."""
    name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)


def setup_server_logging(log_file: str = "logs/server.log", level: Optional[int] = None) -> logging.Logger:
    """Route all loggers to stdout and ``log_file``.

    Calling it again replaces the handlers instead of adding more.

    Args:
        log_file: Log file path; missing directories are created
        level: Level override (default: from LOG_LEVEL)

    Returns:
        The configured root logger
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_level = level if level is not None else get_log_level()

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(log_level)

    _attach(root, logging.StreamHandler(sys.stdout), log_level)
    _attach(
        root,
        RotatingFileHandler(log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"),
        log_level,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    return root


__all__ = ["get_log_level", "setup_server_logging"]
