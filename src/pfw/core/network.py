"""Listen and remote address resolution.

Address specs come in three shapes:
- ``host:port`` with an IP literal, used as is
- ``host:port`` with a hostname, rewritten to the first IPv4 address it
  resolves to (left untouched when the lookup fails, so the error shows up
  later as a bind or dial failure)
- a bare interface name on the listen side, e.g. ``eth0``, which becomes
  the interface's first IPv4 address with an ephemeral port

Example:
    listen = resolve_address("eth0", is_listen=True)   # "192.168.1.10:0"
    remote = resolve_address("localhost:80", is_listen=False)  # "127.0.0.1:80"
    host, port = to_socket_address(remote)
"""

import ipaddress
import socket

import psutil

from pfw.core.exceptions import AddressError, InterfaceNotFound, NoIPv4OnInterface


def split_host_port(addr: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[v6host]:port`` into host and port strings."""
    if addr.startswith("["):
        end = addr.find("]")
        if end == -1:
            raise AddressError(f"address {addr}: missing ']' in address")
        if addr[end + 1 : end + 2] != ":":
            raise AddressError(f"address {addr}: missing port in address")
        return addr[1:end], addr[end + 2 :]

    host, sep, port = addr.rpartition(":")
    if not sep:
        raise AddressError(f"address {addr}: missing port in address")
    if ":" in host:
        raise AddressError(f"address {addr}: too many colons in address")
    return host, port


def join_host_port(host: str, port: str | int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def is_ip_literal(host: str) -> bool:
    """Check whether host is an IPv4 or IPv6 literal."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def interface_ipv4(name: str) -> str:
    """Return the first IPv4 address assigned to a network interface.

    Raises:
        InterfaceNotFound: No interface with that name exists
        NoIPv4OnInterface: The interface has no IPv4 address
    """
    addrs = psutil.net_if_addrs().get(name)
    if addrs is None:
        raise InterfaceNotFound(f"invalid interface: {name}")

    ipv4 = next((addr.address for addr in addrs if addr.family == socket.AF_INET), None)
    if not ipv4:
        raise NoIPv4OnInterface(f"no IPv4 address found for interface {name}")
    return ipv4


def lookup_ipv4(host: str) -> str | None:
    """Forward lookup preferring the first IPv4 result, None on failure."""
    try:
        infos = socket.getaddrinfo(host, None)
    except (OSError, UnicodeError):
        return None
    return next((info[4][0] for info in infos if info[0] == socket.AF_INET), None)


def resolve_address(spec: str, is_listen: bool) -> str:
    """Resolve an address spec into a bindable or dialable ``host:port``.

    Args:
        spec: Address spec from the configuration
        is_listen: Whether this is a listen address (enables interface names)

    Returns:
        str: Resolved ``host:port``

    Raises:
        AddressError: The spec is malformed or names an unusable interface
    """
    if is_listen and ":" not in spec:
        return f"{interface_ipv4(spec)}:0"

    host, port = split_host_port(spec)
    if host and not is_ip_literal(host):
        if ip := lookup_ipv4(host):
            return join_host_port(ip, port)
    return spec


def to_socket_address(addr: str) -> tuple[str, int]:
    """Convert a resolved ``host:port`` into a socket address tuple.

    The port may be numeric or a service name such as ``http``.
    """
    host, port = split_host_port(addr)
    if port.isdigit():
        port_number = int(port)
    else:
        try:
            port_number = socket.getservbyname(port)
        except OSError as e:
            raise AddressError(f"address {addr}: unknown port") from e
    if not 0 <= port_number <= 65535:
        raise AddressError(f"address {addr}: invalid port")
    return host, port_number


def address_family(host: str) -> socket.AddressFamily:
    """Pick the socket family for a host: AF_INET6 for IPv6 literals, else AF_INET."""
    if ":" in host:
        return socket.AF_INET6
    return socket.AF_INET
