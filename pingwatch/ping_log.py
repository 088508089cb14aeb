"""
Bounded, thread-safe log of ping arrival times keyed by source address.

The log is written from the capture thread on every echo request and read by
HTTP handlers and the periodic state saver. All access goes through the
methods below; the underlying mapping is never handed out by reference.
"""

from __future__ import annotations

from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Iterator, Optional, TextIO, Tuple
import threading

from pydantic import BaseModel, ConfigDict, ValidationError

DEFAULT_MAX_ENTRIES = 200


class StateFormatError(ValueError):
    """Raised when a persisted ping document cannot be loaded."""


class PingState(BaseModel):
    """On-disk and `/json` document: address -> ordered timestamps."""

    model_config = ConfigDict(frozen=True)

    pings: Dict[str, list[datetime]] = {}


class ReadWriteLock:
    """
    Many readers or one writer.

    Waiting writers block new readers so a steady stream of HTTP reads
    cannot starve the capture thread.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class PingLog:
    """Concurrent multi-address time series with bounded width and depth.

    At most ``max_entries`` addresses are tracked, each with at most
    ``max_entries`` observations. When a new address arrives at capacity the
    address that has been quiet the longest (oldest *latest* observation) is
    evicted. A full per-address history drops its oldest observation.

    Attributes:
        max_entries: Bound applied to both the address count and the depth
            of every address's history.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be a positive integer")
        self.max_entries: int = max_entries
        self._clock = clock
        self._pings: Dict[str, Deque[datetime]] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._pings)

    def __contains__(self, address: object) -> bool:
        with self._lock.read():
            return address in self._pings

    # ------------------------------ Write path ------------------------------

    def record(self, address: str, now: Optional[datetime] = None) -> datetime:
        """Append one observation for ``address`` and return the stored time.

        Args:
            address: Canonical source address.
            now: Observation time; defaults to the log's clock.

        Returns:
            The timestamp actually stored. It is never earlier than the
            address's previous observation, even if the wall clock stepped
            backwards.
        """
        ts = _as_utc(now if now is not None else self._clock())
        with self._lock.write():
            seq = self._pings.get(address)
            if seq is None:
                while len(self._pings) >= self.max_entries:
                    del self._pings[self._quietest()]
                seq = deque(maxlen=self.max_entries)
                self._pings[address] = seq
            elif seq and ts < seq[-1]:
                ts = seq[-1]
            seq.append(ts)
        return ts

    def _quietest(self) -> str:
        # min() keeps the first of equal keys, i.e. insertion order on ties
        return min(self._pings, key=lambda addr: self._pings[addr][-1])

    # ------------------------------ Read path -------------------------------

    def snapshot(self) -> Dict[str, Tuple[datetime, ...]]:
        """Return a consistent copy of every address's observations."""
        with self._lock.read():
            return {addr: tuple(seq) for addr, seq in self._pings.items()}

    def dumps(self) -> str:
        """Encode the current state as the persisted JSON document."""
        return PingState(pings=self.snapshot()).model_dump_json()

    def serialize(self, sink: TextIO) -> None:
        """Write the whole log to ``sink`` as one JSON document line."""
        sink.write(self.dumps())
        sink.write("\n")

    # ------------------------------- Hydration ------------------------------

    def deserialize(self, source: TextIO) -> int:
        """Replace the whole log with the document read from ``source``.

        The document is decoded and normalized before the swap, so on any
        error the current contents are left as they were.

        Returns:
            The number of addresses loaded.

        Raises:
            StateFormatError: If the document is not valid JSON, does not
                match the expected shape, or holds a sequence that goes
                back in time.
        """
        try:
            state = PingState.model_validate_json(source.read())
        except (ValidationError, UnicodeDecodeError) as e:
            raise StateFormatError(f"malformed ping state: {e}") from e

        loaded: Dict[str, Deque[datetime]] = {}
        for addr, times in state.pings.items():
            if not times:
                continue
            times = [_as_utc(t) for t in times]
            if any(b < a for a, b in zip(times, times[1:])):
                raise StateFormatError(f"timestamps for {addr} are not in order")
            loaded[addr] = deque(times, maxlen=self.max_entries)

        if len(loaded) > self.max_entries:
            newest = sorted(loaded, key=lambda addr: loaded[addr][-1], reverse=True)
            keep = set(newest[: self.max_entries])
            loaded = {addr: seq for addr, seq in loaded.items() if addr in keep}

        with self._lock.write():
            self._pings = loaded
        return len(loaded)
