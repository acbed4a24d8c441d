"""Per-forwarder statistics.

Each forwarder instance owns one ``ForwarderStats``. Counters are updated
from connection and datagram handler threads, so all access goes through
an internal lock.

Example:
    stats = ForwarderStats()
    stats.datagram_started()
    try:
        ...
    finally:
        stats.datagram_ended()
"""

import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of a forwarder's counters."""

    active_connections: int
    total_connections: int
    in_flight_datagrams: int
    peak_in_flight_datagrams: int
    total_datagrams: int
    bytes_upstream: int
    bytes_downstream: int
    failures: int
    uptime: float


class ForwarderStats:
    """Thread-safe counters for one forwarder instance."""

    def __init__(self) -> None:
        self.active_connections = 0
        self.total_connections = 0
        self.in_flight_datagrams = 0
        self.peak_in_flight_datagrams = 0
        self.total_datagrams = 0
        self.bytes_upstream = 0
        self.bytes_downstream = 0
        self.failures = 0
        self.start_time = time.monotonic()
        self._lock = threading.Lock()

    def connection_started(self) -> None:
        with self._lock:
            self.active_connections += 1
            self.total_connections += 1

    def connection_ended(self) -> None:
        with self._lock:
            self.active_connections -= 1

    def datagram_started(self) -> None:
        """Count a datagram whose forward-and-reply cycle has begun."""
        with self._lock:
            self.in_flight_datagrams += 1
            self.total_datagrams += 1
            self.peak_in_flight_datagrams = max(self.peak_in_flight_datagrams, self.in_flight_datagrams)

    def datagram_ended(self) -> None:
        with self._lock:
            self.in_flight_datagrams -= 1

    def update_bytes(self, upstream: int = 0, downstream: int = 0) -> None:
        """Add relayed byte counts.

        Args:
            upstream: Bytes sent from client towards the remote
            downstream: Bytes sent from the remote back to the client
        """
        with self._lock:
            self.bytes_upstream += upstream
            self.bytes_downstream += downstream

    def failure(self) -> None:
        with self._lock:
            self.failures += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                active_connections=self.active_connections,
                total_connections=self.total_connections,
                in_flight_datagrams=self.in_flight_datagrams,
                peak_in_flight_datagrams=self.peak_in_flight_datagrams,
                total_datagrams=self.total_datagrams,
                bytes_upstream=self.bytes_upstream,
                bytes_downstream=self.bytes_downstream,
                failures=self.failures,
                uptime=time.monotonic() - self.start_time,
            )
