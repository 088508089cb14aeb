"""
Ping log persistence: startup hydration and periodic snapshots.

The state file is rewritten whole on every save. Writes go to a temporary
file next to it and are moved into place with `os.replace`, so a crash
mid-write never leaves a truncated state file behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional
import logging
import os
import tempfile
import threading

from ..ping_log import PingLog, StateFormatError
from ..utils import iso_or_none


class StateLoadError(RuntimeError):
    """Raised when existing state cannot be loaded at startup."""


@dataclass
class StateManager:
    """
    Owns the state file for one PingLog:
      - load() once at startup, before capture starts,
      - start()/stop() the background save loop,
      - save() on demand (also the final save from stop()).
    """
    ping_log: PingLog
    state_file: Path
    interval: float
    logger: logging.Logger

    thread: Optional[threading.Thread] = None
    last_saved_at: Optional[datetime] = None
    last_error: Optional[str] = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    # ------------------------------ Hydration ------------------------------

    def load(self) -> int:
        """
        Replace the ping log with the saved state.

        Returns the number of addresses loaded. A missing state file is not an
        error and leaves the log empty.

        Raises:
            StateLoadError: If the file exists but cannot be read or parsed.
        """
        try:
            with self.state_file.open("r", encoding="utf-8") as f:
                count = self.ping_log.deserialize(f)
        except FileNotFoundError:
            self.logger.info("No saved state at %s, starting empty", self.state_file)
            return 0
        except (OSError, StateFormatError) as e:
            raise StateLoadError(f"cannot load state from {self.state_file}: {e}") from e

        self.logger.info("Loaded %d addresses from %s", count, self.state_file)
        return count

    # ----------------------------- Persistence -----------------------------

    def save(self) -> bool:
        """Write the current log to the state file. Failures are logged, not raised."""
        with self._lock:
            tmp_path: Optional[str] = None
            try:
                directory = self.state_file.parent
                fd, tmp_path = tempfile.mkstemp(
                    prefix=f".{self.state_file.name}.", suffix=".tmp", dir=directory
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    self.ping_log.serialize(f)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.state_file)
                tmp_path = None
            except OSError as e:
                self.last_error = f"{type(e).__name__}: {e}"
                self.logger.error("Cannot store state to %s: %s", self.state_file, e)
                return False
            finally:
                if tmp_path is not None:
                    try:
                        os.unlink(tmp_path)
                    except OSError:
                        pass

            self.last_saved_at = datetime.now(timezone.utc)
            self.last_error = None
            self.logger.debug("State saved to %s", self.state_file)
            return True

    # ----------------------------- Save loop -------------------------------

    def start(self) -> None:
        """Start saving every `interval` seconds on a background thread."""
        if self.thread and self.thread.is_alive():
            return
        self._stop.clear()

        def runner() -> None:
            while not self._stop.wait(self.interval):
                try:
                    self.save()
                except Exception:
                    # keep the loop alive; next interval retries
                    self.logger.exception("Unexpected error while saving state")

        self.thread = threading.Thread(target=runner, name="state-saver", daemon=True)
        self.thread.start()
        self.logger.info("Saving state every %ss to %s", self.interval, self.state_file)

    def stop(self, final_save: bool = True) -> None:
        """Stop the save loop and, by default, write one last snapshot."""
        self._stop.set()
        if self.thread:
            self.thread.join(timeout=max(1.0, self.interval))
            self.thread = None
        if final_save:
            self.save()

    def status(self) -> Dict[str, object]:
        """Last save time and error, for the health endpoint."""
        with self._lock:
            return {
                "state_file": str(self.state_file),
                "last_saved_at": iso_or_none(self.last_saved_at),
                "last_error": self.last_error,
            }
