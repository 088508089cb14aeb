from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from pingwatch import create_app
from pingwatch.config import Config
from pingwatch.ping_log import PingLog


def at(seconds: float) -> datetime:
    """UTC datetime `seconds` after the epoch."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def ipv4_packet(src: bytes, version_byte: int = 0x45) -> bytes:
    header = bytearray(20)
    header[0] = version_byte
    header[9] = 1  # ICMP
    header[12:16] = src
    header[16:20] = bytes([192, 0, 2, 1])
    return bytes(header) + bytes([8, 0, 0, 0, 0, 1, 0, 1])


def ipv6_packet(src: bytes) -> bytes:
    header = bytearray(40)
    header[0] = 0x60
    header[6] = 58  # ICMPv6
    header[8:24] = src
    return bytes(header) + bytes([128, 0, 0, 0, 0, 1, 0, 1])


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tests.pingwatch")


@pytest.fixture
def ping_log() -> PingLog:
    return PingLog(max_entries=3)


@pytest.fixture
def app_config(tmp_path):
    class TestingConfig(Config):
        TESTING = True
        SOCKET_PATH = str(tmp_path / "http.sock")
        STATE_FILE = str(tmp_path / "state.json")
        SAVE_INTERVAL_SECONDS = 0.05
        MAX_ENTRIES = 3
        LOG_FILE = None
        LOG_LEVEL = "DEBUG"

    return TestingConfig


@pytest.fixture
def app(app_config):
    return create_app(app_config)


@pytest.fixture
def client(app):
    return app.test_client()
