"""
Process entrypoint: hydrate, start capture, serve on a Unix socket.

    PINGWATCH_ENV=development STATE_DIRECTORY=/var/lib/pingwatch \
        RUNTIME_DIRECTORY=/run/pingwatch python -m pingwatch

Exit status is 1 when startup fails (corrupt state, NFLOG unavailable,
socket cannot be bound) or when the HTTP server dies, 0 after a
signal-driven shutdown.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from flask import Flask
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server

from pingwatch import create_app
from pingwatch.managers.capture_manager import CaptureManager
from pingwatch.managers.state_manager import StateLoadError, StateManager


def sd_notify(state: str) -> bool:
    """Send a state line (e.g. ``READY=1``) to the service manager, if any."""
    addr = os.getenv("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr.startswith("@"):
        addr = "\0" + addr[1:]  # abstract namespace
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        sock.connect(addr)
        sock.sendall(state.encode("utf-8"))
    return True


@contextmanager
def _umask(mask: int) -> Iterator[None]:
    old = os.umask(mask)
    try:
        yield
    finally:
        os.umask(old)


def bind_unix_server(app: Flask) -> BaseWSGIServer:
    """Bind a threaded WSGI server to the configured socket path."""
    path = Path(app.config["SOCKET_PATH"])
    try:
        path.unlink()
    except FileNotFoundError:
        pass

    class RequestHandler(WSGIRequestHandler):
        timeout = app.config["REQUEST_TIMEOUT_SECONDS"]

    with _umask(app.config["SOCKET_UMASK"]):
        return make_server(
            f"unix://{path}",
            0,
            app,
            threaded=True,
            request_handler=RequestHandler,
        )


class Service:
    """Startup and shutdown ordering for one app instance."""

    def __init__(self, app: Flask) -> None:
        self.app = app
        self.logger: logging.Logger = app.logger
        self.state_mgr: StateManager = app.extensions["state_mgr"]
        self.capture_mgr: CaptureManager = app.extensions["capture_mgr"]
        self.server: Optional[BaseWSGIServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.failed = False
        self._stopping = threading.Event()

    def start(self) -> None:
        """Hydrate, subscribe, bind and serve. Any failure here is fatal."""
        self.state_mgr.load()
        self.capture_mgr.start()

        self.server = bind_unix_server(self.app)
        self.server_thread = threading.Thread(
            target=self.server.serve_forever, name="http", daemon=True
        )
        self.server_thread.start()
        self.logger.info("Serving on %s", self.app.config["SOCKET_PATH"])

        self.state_mgr.start()
        try:
            if sd_notify("READY=1"):
                self.logger.debug("Readiness sent to service manager")
        except OSError as e:
            self.logger.warning("Cannot notify service manager of readiness: %s", e)

    def request_stop(self, signum=None, _frame=None) -> None:
        if signum is not None:
            self.logger.info("Received %s, shutting down", signal.Signals(signum).name)
        self._stopping.set()

    def wait(self) -> None:
        while not self._stopping.wait(1.0):
            if self.server_thread and not self.server_thread.is_alive():
                self.logger.error("HTTP server stopped unexpectedly")
                self.failed = True
                break

    def stop(self) -> None:
        """Best effort: stop capture first so the final save sees every ping."""
        try:
            sd_notify("STOPPING=1")
        except OSError:
            self.logger.warning("Cannot notify service manager of shutdown")
        self._teardown(final_save=True)

    def abort(self) -> None:
        """Undo a partial start. Nothing is saved over the existing state file."""
        self._teardown(final_save=False)

    def _teardown(self, final_save: bool) -> None:
        self.capture_mgr.stop()
        self.state_mgr.stop(final_save=final_save)
        if self.server is not None:
            # shutdown() waits for serve_forever, so only call it once serving began
            if self.server_thread is not None:
                self.server.shutdown()
                self.server_thread.join(timeout=5)
                self.server_thread = None
            self.server.server_close()
            self.server = None
            try:
                Path(self.app.config["SOCKET_PATH"]).unlink()
            except OSError:
                pass


def main() -> int:
    app = create_app()
    service = Service(app)

    try:
        service.start()
    except StateLoadError as e:
        # existing state is kept on disk untouched; no final save
        app.logger.critical("%s", e)
        return 1
    except Exception as e:
        app.logger.critical("Startup failed: %s", e, exc_info=True)
        service.abort()
        return 1

    signal.signal(signal.SIGTERM, service.request_stop)
    signal.signal(signal.SIGINT, service.request_stop)
    try:
        service.wait()
    finally:
        service.stop()
        app.logger.info("Shutdown complete")
    return 1 if service.failed else 0


if __name__ == "__main__":
    sys.exit(main())
