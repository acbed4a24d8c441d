"""PROXY protocol v1 (text form) header codec.

A v1 header is a single line sent before any payload:

    PROXY TCP4 192.168.0.1 192.168.0.11 56324 443\r\n

Decoding is lenient about ports: a field that is not an integer decodes
as port 0 instead of rejecting the connection.

Example:
    header = decode_header("PROXY TCP4 10.0.0.1 10.0.0.2 5000 80\r\n")
    line = encode_header(header.source, header.destination)
"""

import ipaddress
from dataclasses import dataclass
from typing import Final

from pfw.core.exceptions import MalformedProxyHeader

PROXY_SIGNATURE: Final = "PROXY"
# Longest possible v1 line, CRLF included
MAX_HEADER_LENGTH: Final = 107
MIN_FIELDS: Final = 6

Endpoint = tuple[str, int]


@dataclass(frozen=True)
class ProxyHeader:
    """Decoded PROXY header.

    Attributes:
        protocol: Protocol family as sent by the peer (``TCP4``, ``TCP6``)
        src_ip: Original client IP
        dst_ip: Original destination IP
        src_port: Original client port
        dst_port: Original destination port
    """

    protocol: str
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int

    @property
    def source(self) -> Endpoint:
        return (self.src_ip, self.src_port)

    @property
    def destination(self) -> Endpoint:
        return (self.dst_ip, self.dst_port)


def _parse_port(field: str) -> int:
    try:
        return int(field)
    except ValueError:
        return 0


def decode_header(line: str | bytes) -> ProxyHeader:
    """Parse a PROXY v1 header line.

    Args:
        line: Header line, with or without the trailing CRLF

    Returns:
        ProxyHeader: Decoded endpoints

    Raises:
        MalformedProxyHeader: Fewer than six fields or missing PROXY signature
    """
    if isinstance(line, bytes):
        line = line.decode("ascii", errors="replace")

    parts = line.strip().split(" ")
    if len(parts) < MIN_FIELDS or parts[0] != PROXY_SIGNATURE:
        raise MalformedProxyHeader("invalid proxy header format")

    return ProxyHeader(
        protocol=parts[1],
        src_ip=parts[2],
        dst_ip=parts[3],
        src_port=_parse_port(parts[4]),
        dst_port=_parse_port(parts[5]),
    )


def _normalize_ip(ip: str) -> tuple[str, bool]:
    """Return the printable form of ip and whether it has an IPv4 form."""
    try:
        addr = ipaddress.ip_address(ip.split("%", 1)[0])
    except ValueError:
        return ip, False
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is not None:
            return str(addr.ipv4_mapped), True
        return str(addr), False
    return str(addr), True


def encode_header(src: Endpoint, dst: Endpoint) -> bytes:
    """Build a PROXY v1 header for a TCP source/destination pair.

    The family is TCP6 only when the source address has no IPv4 form;
    IPv4-mapped IPv6 addresses are written in dotted IPv4 notation.
    """
    src_ip, src_is_v4 = _normalize_ip(src[0])
    dst_ip, _ = _normalize_ip(dst[0])
    protocol = "TCP4" if src_is_v4 else "TCP6"
    line = f"{PROXY_SIGNATURE} {protocol} {src_ip} {dst_ip} {src[1]} {dst[1]}\r\n"
    return line.encode("ascii", errors="replace")
