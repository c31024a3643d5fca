"""Logging setup for Pirido.

Every module logs through ``get_logger(__name__)``. The command line calls
``setup_logging`` once at startup; records go to a size-rotated file under
``~/.pirido/logs`` and, with ``--verbose``, to stderr as well.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Tuple


LOG_DIR = Path.home() / ".pirido" / "logs"
LOG_FILE = LOG_DIR / "pirido.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

DEFAULT_LEVEL = "INFO"


def _resolve_level(log_level: Optional[str]) -> Tuple[str, int]:
    """Return (name, numeric level), falling back to INFO for unknown names."""
    name = (log_level or os.getenv("PIRIDO_LOG_LEVEL") or DEFAULT_LEVEL).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        return DEFAULT_LEVEL, logging.INFO
    return name, level


def setup_logging(
    log_level: Optional[str] = None,
    console: bool = False
) -> None:
    """Route all application logging to the rotating log file.

    Replaces whatever handlers the root logger had, so calling it again
    reconfigures instead of duplicating output.

    Args:
        log_level: Level name such as "DEBUG"; takes precedence over the
                   PIRIDO_LOG_LEVEL environment variable. Unknown names
                   mean INFO.
        console: Also write records to stderr (the ``--verbose`` flag).

    Example:
        >>> setup_logging(log_level="DEBUG", console=True)
    """
    level_name, level = _resolve_level(log_level)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [
        RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        f"Logging initialized: level={level_name}, file={LOG_FILE}, console={console}"
    )


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module; pass ``__name__``."""
    return logging.getLogger(name)
