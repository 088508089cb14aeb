"""
Configuration objects for the pingwatch service.

Values come from environment variables; systemd sets RUNTIME_DIRECTORY and
STATE_DIRECTORY when the unit declares them.
"""

from __future__ import annotations
import os

_RUNTIME_DIR = os.getenv("RUNTIME_DIRECTORY", ".")
_STATE_DIR = os.getenv("STATE_DIRECTORY", ".")


class Config:
    """Base configuration (safe defaults)."""

    # Locations
    RUNTIME_DIRECTORY = _RUNTIME_DIR
    STATE_DIRECTORY = _STATE_DIR
    SOCKET_PATH = os.getenv("PINGWATCH_SOCKET", os.path.join(_RUNTIME_DIR, "http.sock"))
    STATE_FILE = os.getenv("PINGWATCH_STATE_FILE", os.path.join(_STATE_DIR, "state.json"))

    # Socket is group-accessible only
    SOCKET_UMASK = 0o007
    REQUEST_TIMEOUT_SECONDS = 10

    # Capture
    NFLOG_GROUP = int(os.getenv("PINGWATCH_NFLOG_GROUP", "100"))

    # Ping log bounds (addresses tracked, and pings kept per address)
    MAX_ENTRIES = int(os.getenv("PINGWATCH_MAX_ENTRIES", "200"))

    # Persistence
    SAVE_INTERVAL_SECONDS = float(os.getenv("PINGWATCH_SAVE_INTERVAL", "15"))

    # Logging
    LOG_FILE = os.getenv("PINGWATCH_LOG_FILE")
    LOG_LEVEL = os.getenv("PINGWATCH_LOG_LEVEL", "INFO")


class ProductionConfig(Config):
    """Production overrides."""
    LOG_LEVEL = os.getenv("PINGWATCH_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Development overrides."""
    LOG_LEVEL = os.getenv("PINGWATCH_LOG_LEVEL", "DEBUG")
