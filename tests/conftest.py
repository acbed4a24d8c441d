"""Shared fixtures: loopback echo/capture servers and forwarder startup."""

import queue
import socket
import socketserver
import threading

import pytest


class ThreadedTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True


class TCPEchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while data := self.request.recv(4096):
            self.request.sendall(data)


class TCPCaptureHandler(socketserver.BaseRequestHandler):
    """Read a connection until EOF and publish everything received."""

    def handle(self):
        chunks = []
        try:
            while data := self.request.recv(4096):
                chunks.append(data)
        except ConnectionResetError:
            pass
        self.server.received.put(b"".join(chunks))


class UDPEchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        data, sock = self.request
        sock.sendto(data, self.client_address)


def _serve(server):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def tcp_echo_server():
    server = ThreadedTCPServer(("127.0.0.1", 0), TCPEchoHandler)
    _serve(server)
    yield server.server_address
    server.shutdown()
    server.server_close()


@pytest.fixture
def tcp_capture_server():
    """TCP server that records each connection's bytes in ``server.received``."""
    server = ThreadedTCPServer(("127.0.0.1", 0), TCPCaptureHandler)
    server.received = queue.Queue()
    _serve(server)
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def udp_echo_server():
    server = socketserver.ThreadingUDPServer(("127.0.0.1", 0), UDPEchoHandler)
    server.daemon_threads = True
    _serve(server)
    yield server.server_address
    server.shutdown()
    server.server_close()


@pytest.fixture
def udp_silent_remote():
    """Bound UDP socket that never answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock.getsockname()
    sock.close()


@pytest.fixture
def unused_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def start_forwarder():
    """Bind a forwarder, serve it on a thread and return its bound address."""
    started = []

    def _start(forwarder):
        assert forwarder.bind()
        thread = threading.Thread(target=forwarder.run, daemon=True)
        thread.start()
        assert forwarder.wait_until_serving(5)
        started.append((forwarder, thread))
        return forwarder.server_address

    yield _start

    for forwarder, thread in started:
        forwarder.shutdown()
        thread.join(5)
