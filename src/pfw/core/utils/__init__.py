"""Utility functions and helpers."""

from pfw.core.utils.log_config import resolve_log_level, service_logger, setup_logging

__all__ = ["resolve_log_level", "service_logger", "setup_logging"]
