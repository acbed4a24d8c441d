"""Main entry point of the forwarding engine.

This module exposes the small public API the command line needs: build
a supervisor for a list of services and run it until interrupted.

Example:
    from pfw.core.config import service_from_flags
    from pfw.core.forward import run_services

    run_services([service_from_flags("0.0.0.0:8080", "10.0.0.5:80")])
"""

from loguru import logger

from pfw.core.config import ServiceDescriptor

from .lib import ServiceSupervisor, TCPForwarder, UDPForwarder


def run_services(services: list[ServiceDescriptor]) -> None:
    """Run forwarders for all services until they exit or Ctrl-C is pressed."""
    supervisor = ServiceSupervisor(services)
    try:
        supervisor.run()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        supervisor.shutdown()


__all__ = ["run_services", "ServiceSupervisor", "TCPForwarder", "UDPForwarder"]
