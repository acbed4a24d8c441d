"""Command line interface modules.

This package turns command line flags or a config file into service
descriptors and hands them to the forwarding engine in ``pfw.core``.
"""
