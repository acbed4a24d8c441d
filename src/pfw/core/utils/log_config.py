"""Logging configuration for the forwarder.

This module provides centralized logging configuration using Loguru.
Log lines carry an optional ``[service]`` prefix taken from the bound
``prefix`` extra, so every component logs through a handle obtained from
``service_logger`` rather than consulting a global log level.
"""

import sys
from pathlib import Path
from typing import Final

from loguru import logger

LOG_LEVELS: Final = {
    "debug": "DEBUG",
    "info": "INFO",
    # "none" silences info lines but still reports errors
    "none": "ERROR",
}

CONSOLE_FORMAT: Final = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[prefix]}</cyan><level>{message}</level>"
)
FILE_FORMAT: Final = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {extra[prefix]}{message}"

logger.configure(extra={"prefix": ""})


def resolve_log_level(level: str | None, debug: bool = False) -> str:
    """Resolve the effective log level name.

    ``debug`` always wins, an empty level means ``info``.
    """
    if debug:
        return "debug"
    if not level:
        return "info"
    return level.strip().lower()


def setup_logging(level: str = "info", log_file: Path | None = None) -> None:
    """Replace the default Loguru handler with the forwarder's sinks.

    Args:
        level: Resolved log level name (``debug``, ``info`` or ``none``)
        log_file: Optional file that also receives every line, rotated at 10 MB
    """
    min_level = LOG_LEVELS.get(level, "INFO")

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=min_level, backtrace=False, diagnose=False)
    if log_file is not None:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            format=FILE_FORMAT,
            level=min_level,
            enqueue=True,
        )


def service_logger(name: str = ""):
    """Return a logger handle that prefixes every line with ``[name]``."""
    return logger.bind(prefix=f"[{name}] " if name else "")


__all__ = ["logger", "resolve_log_level", "service_logger", "setup_logging"]
