"""Logging configuration helpers for the SpeedSale pipeline.

Every module logger is a child of the ``speedsale`` logger, which owns the
only console and rotating file handlers. Module loggers propagate to it, so
the log file is opened once per process however many modules log.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = "speedsale"
LOG_DIR = os.getenv("SPEEDSALE_LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "speedsale.log")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _qualified(name: str) -> str:
    # ``python -m speedsale.main`` logs as ``__main__``; keep it in the tree.
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return name
    return f"{ROOT_LOGGER}.{name}"


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    os.makedirs(LOG_DIR, exist_ok=True)
    root.setLevel(DEFAULT_LEVEL)
    root.propagate = False
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root.addHandler(file_handler)
    root.addHandler(console_handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a module logger that writes through the shared SpeedSale handlers."""

    _root_logger()
    return logging.getLogger(_qualified(name))


def set_level(level: str | int | None) -> None:
    """Change the level of every SpeedSale logger; ``None`` keeps ``LOG_LEVEL``."""

    if level is None or level == "":
        return
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            _root_logger().warning("Unknown log level %r; keeping %s", level, DEFAULT_LEVEL)
            return
        level = resolved
    _root_logger().setLevel(level)
