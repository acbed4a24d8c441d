"""Common lifecycle for TCP and UDP forwarders.

A forwarder is one listening socket for one service and one transport. It
binds its listen address, logs the forwarding rule and then serves until
shut down. Failing to bind or to resolve the remote only stops this
forwarder; the caller never sees an exception.
"""

import socketserver
import threading
from typing import ClassVar

from pfw.core.config import ServiceDescriptor
from pfw.core.exceptions import AddressError
from pfw.core.lib.stats import ForwarderStats
from pfw.core.network import join_host_port, to_socket_address
from pfw.core.utils.log_config import service_logger


def format_address(address: tuple) -> str:
    """Render a socket address tuple as ``host:port``."""
    return join_host_port(address[0], address[1])


class Forwarder:
    """Base class for one listening forwarder instance.

    Subclasses set ``transport`` and implement ``_resolve_remote`` and
    ``_create_server``.
    """

    transport: ClassVar[str] = ""

    def __init__(self, service: ServiceDescriptor, listen: str, remote: str, log=None) -> None:
        """Initialize the forwarder.

        Args:
            service: Service this forwarder belongs to
            listen: Resolved listen address (``host:port``)
            remote: Resolved remote address (``host:port``)
            log: Logger handle, defaults to one prefixed with the service name
        """
        self.service = service
        self.listen = listen
        self.remote = remote
        self.log = log or service_logger(service.name)
        self.stats = ForwarderStats()
        self.server: socketserver.BaseServer | None = None
        self._serving = threading.Event()

    def _resolve_remote(self) -> None:
        raise NotImplementedError

    def _create_server(self, address: tuple[str, int]) -> socketserver.BaseServer:
        raise NotImplementedError

    @property
    def label(self) -> str:
        return self.transport.upper()

    @property
    def server_address(self) -> tuple:
        if self.server is None:
            raise RuntimeError("forwarder is not bound")
        return self.server.server_address

    def describe(self) -> str:
        message = f"{self.label} {self.listen} -> {self.remote}"
        if self.service.proxy_flags:
            message += f" ({' '.join(self.service.proxy_flags)})"
        return message

    def bind(self) -> bool:
        """Resolve the remote and bind the listening socket.

        Returns:
            bool: True when the forwarder is ready to serve
        """
        try:
            address = to_socket_address(self.listen)
            self.server = self._create_server(address)
        except (AddressError, OSError, UnicodeError) as e:
            self.log.error(f"{self.label} listen error: {e}")
            return False

        try:
            self._resolve_remote()
        except (AddressError, OSError, UnicodeError) as e:
            self.log.error(f"Remote {self.label} resolve error: {e}")
            self.server.server_close()
            self.server = None
            return False
        return True

    def run(self) -> None:
        """Bind if needed and serve until ``shutdown`` is called."""
        if self.server is None and not self.bind():
            return

        self.log.info(self.describe())
        try:
            self._serving.set()
            self.server.serve_forever()
        except Exception:
            self.log.exception(f"{self.label} forwarder stopped")
        finally:
            self.server.server_close()
            self.log.debug(f"{self.label} listener on {self.listen} closed: {self.stats.snapshot()}")

    def wait_until_serving(self, timeout: float | None = None) -> bool:
        """Block until the forwarder has bound and entered its serve loop."""
        return self._serving.wait(timeout)

    def shutdown(self) -> None:
        """Stop serving. Must not be called from a handler thread."""
        if self.server is None:
            return
        if self._serving.is_set():
            self.server.shutdown()
        else:
            self.server.server_close()
