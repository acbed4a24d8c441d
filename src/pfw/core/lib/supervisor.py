"""Service supervisor.

Starts one forwarder thread per transport of every service. Problems are
contained at the smallest scope:
- a bad listen/remote address or transport value skips that service
- a proxy flag on the UDP transport skips only that transport
- a bind failure stops only that forwarder

Example:
    supervisor = ServiceSupervisor(services)
    supervisor.run()  # blocks while any forwarder is running
"""

import threading
import time
from typing import Final

from loguru import logger

from pfw.core.config import ServiceDescriptor
from pfw.core.exceptions import ForwarderError, ProxyOverUDPError
from pfw.core.lib.forwarder import Forwarder
from pfw.core.lib.tcp_forwarder import TCPForwarder
from pfw.core.lib.udp_forwarder import UDPForwarder
from pfw.core.network import resolve_address
from pfw.core.transport import TCP, UDP, select_transports
from pfw.core.utils.log_config import service_logger

FORWARDERS: Final[dict[str, type[Forwarder]]] = {
    TCP: TCPForwarder,
    UDP: UDPForwarder,
}
WATCH_INTERVAL: Final = 1.0  # Seconds between liveness checks


class ServiceSupervisor:
    """Run the forwarders for a list of services."""

    def __init__(self, services: list[ServiceDescriptor], forwarder_options: dict | None = None) -> None:
        """Initialize the supervisor.

        Args:
            services: Resolved service descriptors
            forwarder_options: Extra keyword arguments per transport, e.g.
                ``{"udp": {"reply_timeout": 5.0}}``
        """
        self.services = services
        self.forwarder_options = forwarder_options or {}
        self.forwarders: list[Forwarder] = []
        self.threads: list[threading.Thread] = []

    @staticmethod
    def check_proxy_support(service: ServiceDescriptor, transport: str) -> None:
        """Reject PROXY protocol flags on transports that cannot carry them."""
        if transport == UDP and (service.send_proxy or service.accept_proxy):
            raise ProxyOverUDPError("Proxy Protocol not supported for UDP")

    def build_forwarders(self, service: ServiceDescriptor) -> list[Forwarder]:
        """Resolve a service into its forwarders without starting them.

        Returns an empty list, after logging why, when the service's
        addresses or transports are invalid.
        """
        log = service_logger(service.name)
        try:
            listen = resolve_address(service.listen, is_listen=True)
        except ForwarderError as e:
            log.error(f"Invalid listen address: {e}")
            return []
        try:
            remote = resolve_address(service.remote, is_listen=False)
        except ForwarderError as e:
            log.error(f"Invalid remote address: {e}")
            return []
        try:
            transports = select_transports(service.transport)
        except ForwarderError as e:
            log.error(f"Invalid network: {e}")
            return []

        forwarders = []
        for transport in transports:
            try:
                self.check_proxy_support(service, transport)
            except ProxyOverUDPError as e:
                log.error(str(e))
                continue
            options = self.forwarder_options.get(transport, {})
            forwarders.append(FORWARDERS[transport](service, listen, remote, log=log, **options))
        return forwarders

    def start_service(self, service: ServiceDescriptor) -> list[threading.Thread]:
        """Start every forwarder of one service on its own thread."""
        threads = []
        for forwarder in self.build_forwarders(service):
            thread = threading.Thread(
                target=forwarder.run,
                name=f"{forwarder.transport}-{service.name or forwarder.listen}",
                daemon=True,
            )
            thread.start()
            self.forwarders.append(forwarder)
            threads.append(thread)
        return threads

    def start(self) -> list[threading.Thread]:
        """Start all services; a failing service never stops the others."""
        for service in self.services:
            self.threads.extend(self.start_service(service))
        return self.threads

    def running(self) -> list[threading.Thread]:
        return [thread for thread in self.threads if thread.is_alive()]

    def run(self) -> None:
        """Start all services and block while any forwarder is still running."""
        self.start()
        while self.running():
            time.sleep(WATCH_INTERVAL)
        logger.error("No forwarders running")

    def shutdown(self) -> None:
        """Stop all forwarders and wait for their threads."""
        for forwarder in self.forwarders:
            forwarder.shutdown()
        for thread in self.threads:
            thread.join(timeout=WATCH_INTERVAL)
