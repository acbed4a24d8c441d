"""Exceptions raised by the forwarding engine.

Configuration problems surface as ``ConfigError`` subclasses, address
problems as ``AddressError`` and malformed PROXY headers as
``ProtocolError``. Socket failures (bind, dial, read, write) are plain
``OSError`` and are handled at the connection or datagram that caused them.

Example:
    try:
        transports = select_transports(raw)
    except InvalidTransport as e:
        log.error(f"Invalid network: {e}")
"""


class ForwarderError(Exception):
    """Base exception for forwarder errors."""


class ConfigError(ForwarderError):
    """Raised for a malformed configuration file or field."""


class InvalidTransport(ConfigError):
    """Raised when a transport name is not tcp, udp or both."""

    def __init__(self, value: str) -> None:
        super().__init__(f"invalid network type: {value}")
        self.value = value


class UnsupportedTransportType(ConfigError):
    """Raised when the transport field is neither a string nor a list of strings."""

    def __init__(self, value: object) -> None:
        super().__init__(f"unsupported network type: {type(value).__name__}")
        self.value = value


class ProxyOverUDPError(ConfigError):
    """Raised when send_proxy or accept_proxy is enabled on a UDP transport."""


class AddressError(ForwarderError):
    """Raised when a listen or remote address cannot be parsed."""


class InterfaceNotFound(AddressError):
    """Raised when a listen address names an unknown network interface."""


class NoIPv4OnInterface(AddressError):
    """Raised when a network interface has no IPv4 address."""


class ProtocolError(ForwarderError):
    """Raised for protocol violations on a relayed connection."""


class MalformedProxyHeader(ProtocolError):
    """Raised when a PROXY protocol header cannot be parsed."""
