"""Service configuration.

Services come either from a YAML/JSON config file or from command line
flags. Proxy flags are tri-state while loading (``None`` means "not set")
and are resolved exactly once, in ``parse_services``, into the plain
booleans carried by ``ServiceDescriptor``:

    service value -> global value -> False

The transport value is kept as configured and normalized by the
supervisor when the service starts.

Example:
    config = load_config(Path("config.yaml"))
    services = parse_services(config)
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from pfw.core.exceptions import ConfigError
from pfw.core.utils.log_config import service_logger

TransportValue = str | list[str] | None


@dataclass(frozen=True)
class NetworkConfig:
    """Network block of the global section or of one service."""

    type: Any = None
    send_proxy: bool | None = None
    accept_proxy: bool | None = None


@dataclass(frozen=True)
class GlobalConfig:
    loglevel: str = ""
    network: NetworkConfig = field(default_factory=NetworkConfig)


@dataclass(frozen=True)
class ServiceConfig:
    """One service entry as written in the config file."""

    name: str = ""
    listen: str = ""
    remote: str = ""
    network: NetworkConfig = field(default_factory=NetworkConfig)


@dataclass(frozen=True)
class Config:
    global_: GlobalConfig = field(default_factory=GlobalConfig)
    services: tuple[ServiceConfig, ...] = ()


@dataclass(frozen=True)
class ServiceDescriptor:
    """Fully resolved forwarding rule handed to the supervisor.

    Attributes:
        name: Service name, used only to prefix log lines
        listen: Listen address spec, resolved when the service starts
        remote: Remote address spec, resolved when the service starts
        transport: Transport value as configured (string, list or None)
        send_proxy: Send a PROXY header to the remote
        accept_proxy: Expect a PROXY header from the client
    """

    name: str
    listen: str
    remote: str
    transport: TransportValue = None
    send_proxy: bool = False
    accept_proxy: bool = False

    @property
    def proxy_flags(self) -> list[str]:
        flags = []
        if self.send_proxy:
            flags.append("send_proxy:true")
        if self.accept_proxy:
            flags.append("accept_proxy:true")
        return flags


def _optional_bool(value: Any, key: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _string(value: Any, key: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    raise ConfigError(f"{key} must be a string, got {value!r}")


def _mapping(value: Any, key: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping")
    return value


def _parse_network(raw: Any, key: str) -> NetworkConfig:
    data = _mapping(raw, key)
    return NetworkConfig(
        type=data.get("type"),
        send_proxy=_optional_bool(data.get("send_proxy"), f"{key}.send_proxy"),
        accept_proxy=_optional_bool(data.get("accept_proxy"), f"{key}.accept_proxy"),
    )


def config_from_dict(data: Any) -> Config:
    """Build a ``Config`` from decoded YAML/JSON data.

    Raises:
        ConfigError: A section or field has the wrong type
    """
    data = _mapping(data, "config")
    global_data = _mapping(data.get("global"), "global")
    global_config = GlobalConfig(
        loglevel=_string(global_data.get("loglevel"), "global.loglevel"),
        network=_parse_network(global_data.get("network"), "global.network"),
    )

    raw_services = data.get("services") or []
    if not isinstance(raw_services, list):
        raise ConfigError("services must be a list")

    services = []
    for index, raw in enumerate(raw_services):
        key = f"services[{index}]"
        entry = _mapping(raw, key)
        services.append(
            ServiceConfig(
                name=_string(entry.get("name"), f"{key}.name"),
                listen=_string(entry.get("listen"), f"{key}.listen"),
                remote=_string(entry.get("remote"), f"{key}.remote"),
                network=_parse_network(entry.get("network"), f"{key}.network"),
            )
        )
    return Config(global_=global_config, services=tuple(services))


def load_config(path: Path) -> Config:
    """Load a YAML or JSON config file, chosen by file extension.

    Raises:
        ConfigError: The file cannot be read or decoded, or has an unsupported extension
    """
    suffix = path.suffix.lower()
    if suffix not in (".yaml", ".yml", ".json"):
        raise ConfigError(f"Unsupported config format: {suffix or path.name}")

    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f) if suffix == ".json" else yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Error opening config: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error decoding JSON: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error decoding YAML: {e}") from e

    return config_from_dict(data)


def _inherit(value: Any, default: Any) -> Any:
    return default if value is None else value


def parse_services(config: Config) -> list[ServiceDescriptor]:
    """Merge global network defaults into each service."""
    defaults = config.global_.network
    services = []
    for svc in config.services:
        descriptor = ServiceDescriptor(
            name=svc.name,
            listen=svc.listen,
            remote=svc.remote,
            transport=_inherit(svc.network.type, defaults.type),
            send_proxy=bool(_inherit(svc.network.send_proxy, defaults.send_proxy)),
            accept_proxy=bool(_inherit(svc.network.accept_proxy, defaults.accept_proxy)),
        )
        service_logger(svc.name).debug(f"Service loaded: {descriptor}")
        services.append(descriptor)
    return services


def service_from_flags(
    listen: str,
    remote: str,
    transport: TransportValue = "tcp",
    send_proxy: bool = False,
    accept_proxy: bool = False,
) -> ServiceDescriptor:
    """Build the single unnamed service used when no config file is given."""
    return ServiceDescriptor(
        name="",
        listen=listen,
        remote=remote,
        transport=transport,
        send_proxy=send_proxy,
        accept_proxy=accept_proxy,
    )
