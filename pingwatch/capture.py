"""
capture.py

Subscription to a kernel NFLOG group using Scapy over libpcap.

Incoming echo requests are copied to the group by a firewall rule such as:

    iptables -I INPUT -p icmp -m icmp --icmp-type 8 -j NFLOG --nflog-group 100
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from scapy.all import AsyncSniffer, conf  # type: ignore[import-untyped]


def nflog_interface(group: int) -> str:
    """libpcap pseudo-interface name for an NFLOG group."""
    return f"nflog:{group}"


class NflogSource:
    """Deliver every frame logged to an NFLOG group to a callback.

    The listening socket is opened in `open()` on the calling thread so that a
    missing group, missing privileges or a libpcap without NFLOG support fail
    at startup. Frames are then read on Scapy's sniffer thread; delivery is
    best effort and the kernel may drop frames under load.

    Attributes:
        group: NFLOG group number.
        logger: Logger used for status messages.
    """

    def __init__(self, group: int, logger: logging.Logger) -> None:
        """Bind the source to a group.

        Raises:
            ValueError: If `group` is outside 0..65535.
            TypeError: If `logger` is not a `logging.Logger` instance.
        """
        if not isinstance(logger, logging.Logger):
            raise TypeError("logger must be an instance of logging.Logger")
        if not 0 <= group <= 0xFFFF:
            raise ValueError(f"NFLOG group must be in 0..65535, got {group}")

        self.group: int = group
        self.logger: logging.Logger = logger
        self._socket = None
        self._sniffer: Optional[AsyncSniffer] = None

    @property
    def running(self) -> bool:
        return bool(self._sniffer and self._sniffer.running)

    def open(self, on_frame: Callable[[object], None]) -> None:
        """Open the NFLOG handle and start delivering frames to `on_frame`.

        Raises:
            OSError: (or a Scapy exception) if the handle cannot be opened.
        """
        iface = nflog_interface(self.group)
        conf.use_pcap = True
        self._socket = conf.L2listen(iface=iface)
        self._sniffer = AsyncSniffer(
            opened_socket=self._socket,
            prn=on_frame,
            store=False,
        )
        self._sniffer.start()
        self.logger.info("Listening for pings on %s", iface)

    def close(self) -> None:
        """Stop the sniffer thread and release the handle."""
        sniffer, self._sniffer = self._sniffer, None
        if sniffer is not None and sniffer.running:
            try:
                sniffer.stop(join=True)
            except Exception:
                self.logger.warning("NFLOG sniffer did not stop cleanly", exc_info=True)
        sock, self._socket = self._socket, None
        if sock is not None:
            try:
                sock.close()
            except Exception:
                self.logger.warning("Failed to close NFLOG handle", exc_info=True)
