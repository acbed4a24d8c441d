import socket
import threading
import time

import pytest

from pfw.core.lib.tcp_forwarder import IDLE_TIMEOUT, TCPForwarder
from pfw.core.network import join_host_port
from tests.helpers import make_service, recv_exactly, recv_until_closed, wait_for


def _forwarder(remote_address, idle_timeout=5.0, **service_kwargs):
    remote = join_host_port(*remote_address)
    service = make_service(remote=remote, **service_kwargs)
    return TCPForwarder(service, "127.0.0.1:0", remote, idle_timeout=idle_timeout)


def test_default_idle_timeout_is_five_minutes():
    assert IDLE_TIMEOUT == 300


def test_relays_ping_to_echo_server(tcp_echo_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_echo_server))

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"ping")
        assert recv_exactly(client, 4) == b"ping"


def test_relays_large_payload_in_order(tcp_echo_server, start_forwarder):
    forwarder = _forwarder(tcp_echo_server)
    address = start_forwarder(forwarder)
    payload = bytes(range(256)) * 4096

    with socket.create_connection(address, timeout=5) as client:
        sender = threading.Thread(target=client.sendall, args=(payload,))
        sender.start()
        assert recv_exactly(client, len(payload)) == payload
        sender.join(5)

    assert wait_for(lambda: forwarder.stats.snapshot().bytes_downstream == len(payload))
    assert wait_for(lambda: forwarder.stats.snapshot().bytes_upstream == len(payload))


def test_payload_reaches_remote_unmodified(tcp_capture_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_capture_server.server_address))

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY TCP4 1.1.1.1 2.2.2.2 1 2\r\nping")
        client.shutdown(socket.SHUT_WR)
        recv_until_closed(client)

    assert tcp_capture_server.received.get(timeout=5) == b"PROXY TCP4 1.1.1.1 2.2.2.2 1 2\r\nping"


def test_send_proxy_writes_header_before_payload(tcp_capture_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_capture_server.server_address, send_proxy=True))

    with socket.create_connection(address, timeout=5) as client:
        client_port = client.getsockname()[1]
        client.sendall(b"ping")
        client.shutdown(socket.SHUT_WR)
        recv_until_closed(client)

    expected = f"PROXY TCP4 127.0.0.1 127.0.0.1 {client_port} {address[1]}\r\nping".encode()
    assert tcp_capture_server.received.get(timeout=5) == expected


def test_accept_proxy_strips_first_line(tcp_capture_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_capture_server.server_address, accept_proxy=True))

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY TCP4 1.2.3.4 5.6.7.8 1111 2222\r\nhello\nworld")
        client.shutdown(socket.SHUT_WR)
        recv_until_closed(client)

    assert tcp_capture_server.received.get(timeout=5) == b"hello\nworld"


def test_accept_proxy_header_split_across_writes(tcp_capture_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_capture_server.server_address, accept_proxy=True))

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY TCP4 1.2.")
        time.sleep(0.1)
        client.sendall(b"3.4 5.6.7.8 1111 2222\r\n")
        time.sleep(0.1)
        client.sendall(b"payload")
        client.shutdown(socket.SHUT_WR)
        recv_until_closed(client)

    assert tcp_capture_server.received.get(timeout=5) == b"payload"


def test_accept_and_send_proxy_forwards_original_endpoints(tcp_capture_server, start_forwarder):
    forwarder = _forwarder(tcp_capture_server.server_address, accept_proxy=True, send_proxy=True)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY TCP4 1.2.3.4 5.6.7.8 1111 2222\r\nhello")
        client.shutdown(socket.SHUT_WR)
        recv_until_closed(client)

    assert tcp_capture_server.received.get(timeout=5) == b"PROXY TCP4 1.2.3.4 5.6.7.8 1111 2222\r\nhello"


@pytest.mark.parametrize("header", [b"GET / HTTP/1.1\r\n", b"PROXY TCP4 1.2.3.4\r\n"])
def test_malformed_proxy_header_closes_connection(header, tcp_capture_server, start_forwarder):
    forwarder = _forwarder(tcp_capture_server.server_address, accept_proxy=True)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(header)
        assert recv_until_closed(client) == b""

    assert wait_for(lambda: forwarder.stats.snapshot().failures == 1)
    assert tcp_capture_server.received.empty()


def test_overlong_proxy_header_closes_connection(tcp_capture_server, start_forwarder):
    forwarder = _forwarder(tcp_capture_server.server_address, accept_proxy=True)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY " + b"x" * 200)
        assert recv_until_closed(client) == b""

    assert wait_for(lambda: forwarder.stats.snapshot().failures == 1)


def test_overlong_proxy_header_after_short_first_chunk(tcp_capture_server, start_forwarder):
    forwarder = _forwarder(tcp_capture_server.server_address, accept_proxy=True)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"PROXY TCP4 ")
        time.sleep(0.2)
        client.sendall(b"1.1.1.1 2.2.2.2 1 2" + b" " * 2000 + b"\r\npayload")
        assert recv_until_closed(client) == b""

    assert wait_for(lambda: forwarder.stats.snapshot().failures == 1)
    assert tcp_capture_server.received.empty()


def test_dial_failure_closes_only_that_connection(unused_port, tcp_echo_server, start_forwarder):
    broken = _forwarder(("127.0.0.1", unused_port))
    broken_address = start_forwarder(broken)

    with socket.create_connection(broken_address, timeout=5) as client:
        assert recv_until_closed(client) == b""
    assert wait_for(lambda: broken.stats.snapshot().failures == 1)

    # The listener keeps accepting after a failed dial
    with socket.create_connection(broken_address, timeout=5) as client:
        assert recv_until_closed(client) == b""
    assert wait_for(lambda: broken.stats.snapshot().failures == 2)


def test_unencodable_remote_host_fails_only_the_dial(start_forwarder):
    # A DNS label over 63 characters cannot be IDNA encoded
    remote = "a" * 70 + ".example:80"
    forwarder = TCPForwarder(make_service(remote=remote), "127.0.0.1:0", remote, idle_timeout=5.0)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        assert recv_until_closed(client) == b""
    assert wait_for(lambda: forwarder.stats.snapshot().failures == 1)
    assert wait_for(lambda: forwarder.stats.snapshot().active_connections == 0)


def test_idle_connection_is_closed(tcp_echo_server, start_forwarder):
    forwarder = _forwarder(tcp_echo_server, idle_timeout=0.3)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        started = time.monotonic()
        assert recv_until_closed(client) == b""
        assert time.monotonic() - started < 4

    assert wait_for(lambda: forwarder.stats.snapshot().active_connections == 0)


def test_activity_keeps_connection_open(tcp_echo_server, start_forwarder):
    address = start_forwarder(_forwarder(tcp_echo_server, idle_timeout=0.5))

    with socket.create_connection(address, timeout=5) as client:
        for _ in range(6):
            client.sendall(b"tick")
            assert recv_exactly(client, 4) == b"tick"
            time.sleep(0.2)


def test_client_eof_closes_both_sides(tcp_capture_server, start_forwarder):
    forwarder = _forwarder(tcp_capture_server.server_address)
    address = start_forwarder(forwarder)

    with socket.create_connection(address, timeout=5) as client:
        client.sendall(b"bye")
        client.shutdown(socket.SHUT_WR)
        assert recv_until_closed(client) == b""

    assert wait_for(lambda: forwarder.stats.snapshot().active_connections == 0)
    assert forwarder.stats.snapshot().total_connections == 1


def test_bind_failure_returns_false():
    occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    occupied.bind(("127.0.0.1", 0))
    occupied.listen()
    try:
        listen = join_host_port(*occupied.getsockname())
        forwarder = TCPForwarder(make_service(), listen, "127.0.0.1:1")
        assert forwarder.bind() is False
        forwarder.run()  # returns immediately
    finally:
        occupied.close()


def test_describe_includes_proxy_flags():
    forwarder = TCPForwarder(make_service(send_proxy=True, accept_proxy=True), "0.0.0.0:80", "10.0.0.1:80")
    assert forwarder.describe() == "TCP 0.0.0.0:80 -> 10.0.0.1:80 (send_proxy:true accept_proxy:true)"
