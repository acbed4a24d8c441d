"""Helpers shared by the socket tests."""

import socket
import time

from pfw.core.config import ServiceDescriptor


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it returns True or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def recv_until_closed(sock: socket.socket) -> bytes:
    """Read until the peer closes; a reset counts as closed."""
    chunks = []
    try:
        while data := sock.recv(4096):
            chunks.append(data)
    except ConnectionResetError:
        pass
    return b"".join(chunks)


def make_service(listen="127.0.0.1:0", remote="127.0.0.1:0", **kwargs) -> ServiceDescriptor:
    return ServiceDescriptor(name=kwargs.pop("name", "test"), listen=listen, remote=remote, **kwargs)
