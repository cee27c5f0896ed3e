"""
Application logging.

Every module logs through the single ``sales_tracker`` logger. Records go to
stderr and, when the log directory is writable, to a size-rotated file.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "sales_tracker"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DIR = Path(os.getenv("LOG_DIR") or Path(__file__).resolve().parent / ".logs")
LOG_FILE = LOG_DIR / "sales_tracker.log"
MAX_LOG_BYTES = 1_000_000
LOG_BACKUPS = 5


def level_from_env(default: int = logging.INFO) -> int:
    """Numeric level named by ``LOG_LEVEL``; unknown names give ``default``."""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "").strip().upper())
    return level if isinstance(level, int) else default


def rotating_file_handler(path: Path) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    except OSError as exc:
        sys.stderr.write(f"Logging to stderr only, cannot open '{path}': {exc}\n")
        return None


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(level_from_env())
    handlers = [logging.StreamHandler(sys.stderr), rotating_file_handler(LOG_FILE)]
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in filter(None, handlers):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


log = get_logger()
