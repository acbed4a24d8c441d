"""Transport selection for a service.

The ``type`` field of a service's network block may be a single string
(``tcp``, ``udp``, ``both`` or a bracketed list such as ``[tcp,udp]``), a
list of strings, or absent. This module normalizes all of those into an
ordered tuple of transports to start.
"""

from collections.abc import Sequence
from typing import Final, Literal

from pfw.core.exceptions import InvalidTransport, UnsupportedTransportType

Transport = Literal["tcp", "udp"]

TCP: Final = "tcp"
UDP: Final = "udp"
VALID_TRANSPORTS: Final = (TCP, UDP)
DEFAULT_TRANSPORTS: Final[tuple[Transport, ...]] = (TCP,)


def _dedupe(transports: list[str]) -> tuple[Transport, ...]:
    """Drop repeated transports while keeping the configured order."""
    return tuple(dict.fromkeys(transports))


def _validate_each(items: Sequence[object]) -> tuple[Transport, ...]:
    result = []
    for item in items:
        if not isinstance(item, str):
            raise UnsupportedTransportType(item)
        name = item.strip().lower()
        if name not in VALID_TRANSPORTS:
            raise InvalidTransport(name)
        result.append(name)
    if not result:
        return DEFAULT_TRANSPORTS
    return _dedupe(result)


def select_transports(raw: str | Sequence[str] | None) -> tuple[Transport, ...]:
    """Normalize a configured transport value into the transports to run.

    Args:
        raw: Configured value, a string, a list of strings or None

    Returns:
        tuple: Non-empty tuple of ``"tcp"``/``"udp"`` in configured order

    Raises:
        InvalidTransport: A name other than tcp or udp was given
        UnsupportedTransportType: The value is not a string or a list
    """
    if raw is None:
        return DEFAULT_TRANSPORTS

    if isinstance(raw, str):
        value = raw.strip().lower()
        if not value:
            return DEFAULT_TRANSPORTS
        if value == "both":
            return (TCP, UDP)
        if value in VALID_TRANSPORTS:
            return (value,)
        if value.startswith("[") and value.endswith("]"):
            return _validate_each(value[1:-1].split(","))
        raise InvalidTransport(value)

    if isinstance(raw, (list, tuple)):
        return _validate_each(raw)

    raise UnsupportedTransportType(raw)
