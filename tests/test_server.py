from __future__ import annotations

import os
import socket
import stat
import threading

from conftest import at
from pingwatch import create_app, server
from pingwatch.server import Service, bind_unix_server, sd_notify


def test_sd_notify_without_socket(monkeypatch):
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    assert sd_notify("READY=1") is False


def test_sd_notify_sends_state(monkeypatch, tmp_path):
    path = str(tmp_path / "notify")
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        sock.bind(path)
        monkeypatch.setenv("NOTIFY_SOCKET", path)

        assert sd_notify("READY=1") is True
        assert sock.recv(64) == b"READY=1"


def test_unix_socket_permissions(app):
    srv = bind_unix_server(app)
    try:
        mode = stat.S_IMODE(os.stat(app.config["SOCKET_PATH"]).st_mode)
        assert mode & 0o007 == 0
    finally:
        srv.server_close()


def test_stale_socket_is_replaced(app):
    with open(app.config["SOCKET_PATH"], "w") as f:
        f.write("stale")

    srv = bind_unix_server(app)
    try:
        assert stat.S_ISSOCK(os.stat(app.config["SOCKET_PATH"]).st_mode)
    finally:
        srv.server_close()


def http_get(path: str, url: str) -> bytes:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(5)
        sock.connect(path)
        sock.sendall(f"GET {url} HTTP/1.0\r\nHost: localhost\r\n\r\n".encode())
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


class IdleCapture:
    def __init__(self):
        self.started = self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


def test_service_lifecycle(app, monkeypatch):
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    capture = IdleCapture()
    app.extensions["capture_mgr"] = capture
    service = Service(app)

    service.start()
    app.extensions["ping_log"].record("10.0.0.1", at(1))
    assert b"10.0.0.1" in http_get(app.config["SOCKET_PATH"], "/json")
    service.request_stop()
    service.wait()
    service.stop()

    assert capture.started and capture.stopped
    assert not os.path.exists(app.config["SOCKET_PATH"])
    with open(app.config["STATE_FILE"], encoding="utf-8") as f:
        assert "10.0.0.1" in f.read()


def test_main_aborts_on_corrupt_state(app_config, monkeypatch):
    with open(app_config.STATE_FILE, "w", encoding="utf-8") as f:
        f.write("{broken")
    monkeypatch.setattr(server, "create_app", lambda: create_app(app_config))

    assert server.main() == 1
    with open(app_config.STATE_FILE, encoding="utf-8") as f:
        assert f.read() == "{broken"


def service_threads():
    return {t.name for t in threading.enumerate()} & {"http", "state-saver"}


def test_readiness_failure_keeps_service_running(app, monkeypatch, tmp_path):
    monkeypatch.setenv("NOTIFY_SOCKET", str(tmp_path / "no-such-socket"))
    app.extensions["capture_mgr"] = IdleCapture()
    service = Service(app)

    service.start()
    try:
        assert b'"pings"' in http_get(app.config["SOCKET_PATH"], "/json")
        assert service.server_thread.is_alive()
    finally:
        service.request_stop()
        service.stop()

    assert not service_threads()


def test_failed_startup_tears_down_everything(app_config, monkeypatch):
    capture = IdleCapture()

    def build():
        app = create_app(app_config)
        app.extensions["capture_mgr"] = capture
        app.extensions["state_mgr"].interval = 60
        return app

    def refuse(state):
        raise RuntimeError("notify broken")

    monkeypatch.setattr(server, "create_app", build)
    monkeypatch.setattr(server, "sd_notify", refuse)

    assert server.main() == 1
    assert capture.stopped
    assert not os.path.exists(app_config.SOCKET_PATH)
    assert not os.path.exists(app_config.STATE_FILE)
    assert not service_threads()


def test_dead_http_server_exits_nonzero(app_config, monkeypatch):
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)

    def build():
        app = create_app(app_config)
        app.extensions["capture_mgr"] = IdleCapture()
        return app

    start = Service.start

    def start_then_kill_http(self):
        start(self)
        threading.Thread(target=self.server.shutdown, daemon=True).start()

    monkeypatch.setattr(server, "create_app", build)
    monkeypatch.setattr(server.signal, "signal", lambda *args: None)
    monkeypatch.setattr(Service, "start", start_then_kill_http)

    assert server.main() == 1
    assert not os.path.exists(app_config.SOCKET_PATH)
    assert not service_threads()
