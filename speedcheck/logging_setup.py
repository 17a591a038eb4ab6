"""Centralized logging configuration."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import AppConfig

LOG_FILENAME = "speedcheck.log"

# Per-connection and per-request chatter that would otherwise flood a speed run
NOISY_LOGGERS = ("urllib3", "werkzeug")


def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default)


def configure_logging(config: AppConfig) -> Path:
    """Route everything to the console and a rotating file; return the file path."""
    log_dir = config.paths.logs_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(config.logging.level, logging.INFO))

    file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    # Repeated calls replace handlers instead of stacking them
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    library_level = _level(config.logging.library_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return log_path
