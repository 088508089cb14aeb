"""
Source-address extraction from captured packets.

- `nflog_payload` unwraps a DLT_NFLOG frame (as delivered by libpcap on an
  `nflog:<group>` interface) down to the network-layer packet.
- `extract_source` reads the source address straight out of an IPv4 or
  IPv6 header. No checksum or ICMP validation is done; the kernel rule that
  feeds the NFLOG group already selects echo requests.
"""

from __future__ import annotations

from typing import Optional
import socket
import struct

# Shortest payload we accept; covers the IPv6 source field end offset.
MIN_PAYLOAD_LEN = 24

NFLOG_HEADER_LEN = 4
NFULA_PAYLOAD = 9
NLA_TYPE_MASK = 0x3FFF
_TLV = struct.Struct("=HH")  # length, type in host byte order


def extract_source(payload: Optional[bytes]) -> Optional[str]:
    """
    Return the canonical source address of an IP packet, or None.

    Parameters
    ----------
    payload : bytes or None
        Raw network-layer packet, starting at the IP header.

    Returns
    -------
    str or None
        Dotted quad for IPv4, compressed form for IPv6; None when the payload
        is too short or the IP version is neither 4 nor 6.
    """
    if not payload or len(payload) < MIN_PAYLOAD_LEN:
        return None

    version = payload[0] >> 4
    if version == 4:
        return socket.inet_ntop(socket.AF_INET, bytes(payload[12:16]))
    if version == 6:
        return socket.inet_ntop(socket.AF_INET6, bytes(payload[8:24]))
    return None


def nflog_payload(frame: bytes) -> Optional[bytes]:
    """Return the NFULA_PAYLOAD attribute of a DLT_NFLOG frame, if any."""
    offset = NFLOG_HEADER_LEN
    end = len(frame)
    while offset + _TLV.size <= end:
        length, tlv_type = _TLV.unpack_from(frame, offset)
        if length < _TLV.size or offset + length > end:
            return None
        # upper two bits are the netlink nested and byte-order flags
        if tlv_type & NLA_TYPE_MASK == NFULA_PAYLOAD:
            return bytes(frame[offset + _TLV.size : offset + length])
        offset += (length + 3) & ~3
    return None
