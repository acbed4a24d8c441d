"""TCP forwarder with optional PROXY protocol support.

For every accepted connection the handler:
1. reads and strips a PROXY v1 header line when ``accept_proxy`` is set
2. dials the remote
3. writes a PROXY v1 header to the remote when ``send_proxy`` is set,
   built from the accepted header or from the client socket itself
4. relays bytes in both directions until either side closes, errors out
   or the connection has been idle for ``idle_timeout`` seconds

Header and payload never interleave: the inbound header is consumed before
any payload byte is relayed, and the outbound header is fully written
before the first payload byte reaches the remote.

Example:
    forwarder = TCPForwarder(service, "127.0.0.1:9000", "127.0.0.1:9001")
    forwarder.run()
"""

import contextlib
import socket
import socketserver
import threading
import time
from typing import Final

from pfw.core.exceptions import ProtocolError
from pfw.core.lib.forwarder import Forwarder, format_address
from pfw.core.network import address_family, to_socket_address
from pfw.core.proxy_protocol import MAX_HEADER_LENGTH, ProxyHeader, decode_header, encode_header

BUFFER_SIZE: Final = 32 * 1024
IDLE_TIMEOUT: Final = 5 * 60.0  # Seconds


class RelayPair:
    """Inbound and outbound socket of one connection.

    Tracks activity across both relay directions and shuts both sockets
    down together, exactly once, so the direction still blocked in
    ``recv`` wakes up. Closing the sockets stays with their owners.
    """

    def __init__(self, client: socket.socket, remote: socket.socket, idle_timeout: float) -> None:
        self.client = client
        self.remote = remote
        self.idle_timeout = idle_timeout
        self.last_activity = time.monotonic()
        self._lock = threading.Lock()
        self._shut_down = False

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def is_idle(self) -> bool:
        return time.monotonic() - self.last_activity >= self.idle_timeout

    def shutdown(self) -> bool:
        """Shut down both sockets. Returns False if already done."""
        with self._lock:
            if self._shut_down:
                return False
            self._shut_down = True
        for sock in (self.client, self.remote):
            with contextlib.suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
        return True


class TCPRelayHandler(socketserver.BaseRequestHandler):
    """Handle one accepted TCP connection."""

    server: "TCPRelayServer"

    def setup(self) -> None:
        self.forwarder: TCPForwarder = self.server.forwarder
        self.log = self.forwarder.log
        self.stats = self.forwarder.stats

    def _read_header_line(self) -> tuple[bytes, bytes]:
        """Read the first line from the client.

        Returns:
            tuple: The header line and any payload bytes read past it
        """
        buf = b""
        while True:
            chunk = self.request.recv(BUFFER_SIZE)
            if not chunk:
                raise ProtocolError("connection closed before proxy header")
            buf += chunk
            newline = buf.find(b"\n")
            if newline >= MAX_HEADER_LENGTH or (newline == -1 and len(buf) >= MAX_HEADER_LENGTH):
                raise ProtocolError("proxy header too long")
            if newline != -1:
                break
        line, _, rest = buf.partition(b"\n")
        return line + b"\n", rest

    def _receive_proxy_header(self) -> tuple[ProxyHeader, bytes] | None:
        try:
            line, pending = self._read_header_line()
        except (OSError, ProtocolError) as e:
            self.log.error(f"Proxy header read error: {e}")
            return None

        try:
            header = decode_header(line)
        except ProtocolError as e:
            self.log.error(f"Invalid proxy header: {e}")
            return None

        self.log.debug(f"Accepted proxy header {line.strip()!r} from {format_address(self.client_address)}")
        return header, pending

    def _send_proxy_header(self, remote: socket.socket, header: ProxyHeader | None) -> bool:
        if header is not None:
            src, dst = header.source, header.destination
        else:
            src, dst = self.client_address[:2], self.request.getsockname()[:2]

        data = encode_header(src, dst)
        try:
            remote.sendall(data)
        except OSError as e:
            self.log.error(f"Proxy header write error: {e}")
            return False
        self.log.debug(f"Sent proxy header {data.strip()!r}")
        return True

    def _pump(
        self,
        src: socket.socket,
        dst: socket.socket,
        pair: RelayPair,
        upstream: bool,
        pending: bytes = b"",
    ) -> None:
        """Copy bytes from src to dst until EOF, error or idle timeout."""
        direction = "client -> remote" if upstream else "remote -> client"
        try:
            if pending:
                dst.sendall(pending)
                self._count(len(pending), upstream)
            while True:
                try:
                    data = src.recv(BUFFER_SIZE)
                except TimeoutError:
                    if pair.is_idle():
                        self.log.debug(f"Connection from {format_address(self.client_address)} idle, closing")
                        break
                    continue
                if not data:
                    break
                dst.sendall(data)
                pair.touch()
                self._count(len(data), upstream)
        except OSError as e:
            self.log.debug(f"Relay {direction} ended: {e}")
        finally:
            pair.shutdown()

    def _count(self, size: int, upstream: bool) -> None:
        if upstream:
            self.stats.update_bytes(upstream=size)
        else:
            self.stats.update_bytes(downstream=size)

    def relay(self, remote: socket.socket, pending: bytes = b"") -> None:
        """Relay both directions; returns once both have stopped."""
        pair = RelayPair(self.request, remote, self.forwarder.idle_timeout)
        upstream = threading.Thread(
            target=self._pump,
            args=(self.request, remote, pair, True, pending),
            daemon=True,
        )
        upstream.start()
        self._pump(remote, self.request, pair, False)
        upstream.join()

    def handle(self) -> None:
        service = self.forwarder.service
        self.log.debug(f"New TCP connection from {format_address(self.client_address)}")
        self.stats.connection_started()
        try:
            self.request.settimeout(self.forwarder.idle_timeout)

            header = None
            pending = b""
            if service.accept_proxy:
                received = self._receive_proxy_header()
                if received is None:
                    self.stats.failure()
                    return
                header, pending = received

            try:
                remote = socket.create_connection(
                    self.forwarder.remote_address,
                    timeout=self.forwarder.idle_timeout,
                )
            except (OSError, UnicodeError) as e:
                self.log.error(f"Remote connect error: {e}")
                self.stats.failure()
                return

            with remote:
                if service.send_proxy and not self._send_proxy_header(remote, header):
                    self.stats.failure()
                    return
                self.relay(remote, pending)
        finally:
            self.stats.connection_ended()
            self.log.debug(f"TCP connection from {format_address(self.client_address)} closed")


class TCPRelayServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Threaded TCP listener; one daemon thread per connection."""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 128

    def __init__(self, server_address: tuple[str, int], forwarder: "TCPForwarder") -> None:
        self.address_family = address_family(server_address[0])
        self.forwarder = forwarder
        super().__init__(server_address, TCPRelayHandler)

    def get_request(self):
        try:
            return super().get_request()
        except OSError as e:
            # socketserver drops the failed accept and keeps listening
            self.forwarder.log.error(f"Accept error: {e}")
            raise

    def handle_error(self, request, client_address) -> None:
        self.forwarder.log.exception(f"Error handling TCP connection from {format_address(client_address)}")


class TCPForwarder(Forwarder):
    """Forward TCP connections from one listen address to one remote."""

    transport = "tcp"

    def __init__(
        self,
        service,
        listen: str,
        remote: str,
        log=None,
        idle_timeout: float = IDLE_TIMEOUT,
    ) -> None:
        super().__init__(service, listen, remote, log)
        self.idle_timeout = idle_timeout
        self.remote_address: tuple[str, int] | None = None

    def _resolve_remote(self) -> None:
        # Hostnames left unresolved are looked up again on every dial
        self.remote_address = to_socket_address(self.remote)

    def _create_server(self, address: tuple[str, int]) -> TCPRelayServer:
        return TCPRelayServer(address, self)
