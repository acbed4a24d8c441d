"""Core forwarding engine.

This package contains the components that do the actual forwarding:
- Address resolution for listen and remote endpoints
- Transport selection (tcp, udp or both)
- PROXY protocol v1 header encoding and decoding
- TCP and UDP forwarders built on socketserver
- The service supervisor that runs many forwarders from one configuration

The command line lives in ``pfw.cmd`` and only turns flags or a config
file into service descriptors for the supervisor.
"""
