"""Core forwarder library components."""

from .forwarder import Forwarder
from .stats import ForwarderStats, StatsSnapshot
from .supervisor import ServiceSupervisor
from .tcp_forwarder import TCPForwarder
from .udp_forwarder import UDPForwarder

__all__ = [
    "Forwarder",
    "ForwarderStats",
    "ServiceSupervisor",
    "StatsSnapshot",
    "TCPForwarder",
    "UDPForwarder",
]
