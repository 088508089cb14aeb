"""
Capture orchestration: NFLOG frames in, `PingLog.record` calls out.

Runs on Scapy's sniffer thread. Nothing here does I/O besides logging, and no
exception escapes into the sniffer loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import threading

from ..capture import NflogSource
from ..extract import extract_source, nflog_payload
from ..ping_log import PingLog


@dataclass
class CaptureManager:
    """
    Routes captured frames into the ping log and keeps simple counters:
      - start()/stop() control the NFLOG subscription,
      - handle_frame() is the sniffer callback,
      - handle_payload() is the extractor-to-log path,
      - stats() feeds the health endpoint.
    """
    ping_log: PingLog
    group: int
    logger: logging.Logger

    source: Optional[NflogSource] = None
    recorded: int = 0
    dropped: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # ---------------------------- Control plane ----------------------------

    def start(self) -> None:
        """Open the NFLOG group. Errors propagate; the service cannot run without it."""
        if self.source is not None and self.source.running:
            return
        self.source = NflogSource(self.group, self.logger)
        try:
            self.source.open(self.handle_frame)
        except Exception:
            self.source.close()
            self.source = None
            raise

    def stop(self) -> None:
        if self.source is None:
            return
        self.logger.info("Stopping capture on NFLOG group %d", self.group)
        self.source.close()
        self.source = None

    @property
    def running(self) -> bool:
        return bool(self.source and self.source.running)

    # ------------------------------ Data plane -----------------------------

    def handle_frame(self, pkt) -> None:
        """Sniffer callback: unwrap the NFLOG frame and record the ping."""
        try:
            payload = nflog_payload(bytes(pkt))
        except Exception:
            self.logger.exception("Cannot decode NFLOG frame")
            payload = None
        if payload is None:
            self._count(dropped=True)
            self.logger.debug("NFLOG frame without payload dropped")
            return
        self.handle_payload(payload)

    def handle_payload(self, payload: bytes) -> Optional[str]:
        """
        Record one ping from a raw IP packet.

        Returns the source address, or None when the packet was dropped.
        """
        address = extract_source(payload)
        if address is None:
            self._count(dropped=True)
            self.logger.warning("invalid ICMP packet: %s", bytes(payload or b"").hex())
            return None
        try:
            self.ping_log.record(address)
        except Exception:
            self._count(dropped=True)
            self.logger.exception("Cannot record ping from %s", address)
            return None
        self._count(dropped=False)
        return address

    def _count(self, dropped: bool) -> None:
        with self._lock:
            if dropped:
                self.dropped += 1
            else:
                self.recorded += 1

    # ----------------------------- Telemetry -------------------------------

    def stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "nflog_group": self.group,
                "running": self.running,
                "recorded": self.recorded,
                "dropped": self.dropped,
            }
