"""UDP forwarder.

There is no session table. Every datagram read from the listening socket
is sent to the remote over a fresh socket; the first reply to arrive on
that socket within ``reply_timeout`` is sent back to the datagram's sender
from the listening socket, and the fresh socket is closed.

At most ``max_in_flight`` datagrams are being forwarded at any time. The
read loop blocks on an admission slot before dispatching a datagram, so
excess load delays reads instead of piling up threads.
"""

import socket
import socketserver
import threading
from typing import Final

from pfw.core.exceptions import AddressError
from pfw.core.lib.forwarder import Forwarder, format_address
from pfw.core.network import address_family, to_socket_address

BUFFER_SIZE: Final = 4096
REPLY_TIMEOUT: Final = 30.0  # Seconds
MAX_IN_FLIGHT: Final = 1000


class UDPRelayHandler(socketserver.BaseRequestHandler):
    """Forward one datagram and relay its single reply."""

    server: "UDPRelayServer"

    def forward(self, data: bytes) -> bytes:
        """Send data to the remote and wait for one reply."""
        forwarder = self.server.forwarder
        family, _, _, _, remote_address = forwarder.remote_info
        with socket.socket(family, socket.SOCK_DGRAM) as upstream:
            upstream.settimeout(forwarder.reply_timeout)
            upstream.connect(remote_address)
            upstream.send(data)
            return upstream.recv(BUFFER_SIZE)

    def handle(self) -> None:
        data, listener = self.request
        forwarder = self.server.forwarder
        log = forwarder.log
        forwarder.stats.datagram_started()
        try:
            try:
                reply = self.forward(data)
            except OSError as e:
                log.error(f"UDP forward error: {e}")
                forwarder.stats.failure()
                return

            try:
                listener.sendto(reply, self.client_address)
            except OSError as e:
                log.error(f"UDP reply error: {e}")
                forwarder.stats.failure()
                return

            forwarder.stats.update_bytes(upstream=len(data), downstream=len(reply))
            log.debug(f"Replied {len(reply)} bytes to {format_address(self.client_address)}")
        finally:
            forwarder.stats.datagram_ended()


class UDPRelayServer(socketserver.ThreadingMixIn, socketserver.UDPServer):
    """Threaded UDP listener gated by a fixed number of admission slots."""

    daemon_threads = True
    max_packet_size = BUFFER_SIZE

    def __init__(self, server_address: tuple[str, int], forwarder: "UDPForwarder") -> None:
        self.address_family = address_family(server_address[0])
        self.forwarder = forwarder
        self.admission = threading.BoundedSemaphore(forwarder.max_in_flight)
        super().__init__(server_address, UDPRelayHandler)

    def get_request(self):
        try:
            return super().get_request()
        except OSError as e:
            # socketserver drops the failed read and keeps serving
            self.forwarder.log.error(f"UDP read error: {e}")
            raise

    def process_request(self, request, client_address) -> None:
        self.forwarder.log.debug(f"Received {len(request[0])} bytes from {format_address(client_address)}")
        self.admission.acquire()
        try:
            super().process_request(request, client_address)
        except BaseException:
            self.admission.release()
            raise

    def process_request_thread(self, request, client_address) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self.admission.release()

    def handle_error(self, request, client_address) -> None:
        self.forwarder.log.exception(f"Error handling UDP datagram from {format_address(client_address)}")


class UDPForwarder(Forwarder):
    """Forward UDP datagrams from one listen address to one remote."""

    transport = "udp"

    def __init__(
        self,
        service,
        listen: str,
        remote: str,
        log=None,
        reply_timeout: float = REPLY_TIMEOUT,
        max_in_flight: int = MAX_IN_FLIGHT,
    ) -> None:
        super().__init__(service, listen, remote, log)
        self.reply_timeout = reply_timeout
        self.max_in_flight = max_in_flight
        self.remote_info: tuple | None = None

    def _resolve_remote(self) -> None:
        host, port = to_socket_address(self.remote)
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as e:
            # an over-long DNS label fails IDNA encoding before any lookup
            raise AddressError(f"address {self.remote}: {e}") from e
        self.remote_info = infos[0]

    def _create_server(self, address: tuple[str, int]) -> UDPRelayServer:
        return UDPRelayServer(address, self)
