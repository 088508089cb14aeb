"""
Utility helpers: directory setup, logging config, and time formatting.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from datetime import datetime
from flask import Flask

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def ensure_dirs(*paths: Path) -> None:
    """Ensure each directory exists."""
    for p in paths:
        p.mkdir(parents=True, exist_ok=True)


def init_logging(app: Flask) -> logging.Logger:
    """Configure the `pingwatch` logger: console, plus a rotating file if LOG_FILE is set."""
    log_level = getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO)
    logger = logging.getLogger("pingwatch")
    logger.setLevel(log_level)
    logger.propagate = False  # avoid duplicate logs if root has handlers

    # create_app may run more than once per process (tests)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console
    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(ch)

    # File (rotating)
    if app.config.get("LOG_FILE"):
        log_file = Path(app.config["LOG_FILE"])
        ensure_dirs(log_file.parent)
        fh = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5)
        fh.setLevel(log_level)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(fh)

    return logger


def epoch_seconds(ts: datetime) -> str:
    """Fractional UNIX time with microsecond precision, e.g. `1760000000.123456`."""
    return f"{ts.timestamp():f}"


def iso_or_none(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None
