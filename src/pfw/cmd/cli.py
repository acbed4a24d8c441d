"""Command-line interface for the port forwarder.

Either a config file describes any number of services, or ``--listen``
and ``--remote`` describe a single unnamed one:

    $ pfw -l 0.0.0.0:8080 -r 10.0.0.5:80 --send_proxy
    $ pfw -c /etc/pfw/config.yaml
"""

from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pfw import __version__
from pfw.core.config import ServiceDescriptor, load_config, parse_services, service_from_flags
from pfw.core.exceptions import ConfigError
from pfw.core.forward import run_services
from pfw.core.utils.log_config import resolve_log_level, setup_logging

console = Console()
app = typer.Typer(
    help="Port forward tool for TCP/UDP with PROXY protocol support",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"pfw version: {__version__}", highlight=False)
        raise typer.Exit()


def show_services(services: list[ServiceDescriptor]) -> None:
    """Print the configured services as a table."""
    table = Table(title="Services")
    table.add_column("Name", style="cyan")
    table.add_column("Listen", style="green")
    table.add_column("Remote", style="green")
    table.add_column("Network")
    table.add_column("PROXY")

    for svc in services:
        if isinstance(svc.transport, (list, tuple)):
            transport = ",".join(map(str, svc.transport))
        else:
            transport = str(svc.transport or "tcp")
        flags = " ".join(svc.proxy_flags) or "-"
        table.add_row(*(escape(cell) for cell in (svc.name or "-", svc.listen, svc.remote, transport, flags)))

    console.print(table)


@app.command()
def main(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to config file"),
    listen: str | None = typer.Option(None, "--listen", "-l", help="Listen address (required without config file)"),
    remote: str | None = typer.Option(None, "--remote", "-r", help="Remote address (required without config file)"),
    network_type: str = typer.Option("tcp", "--type", "-n", help="Network type [tcp|udp|both]"),
    send_proxy: bool = typer.Option(False, "--send_proxy", help="Enable sending PROXY protocol"),
    accept_proxy: bool = typer.Option(False, "--accept_proxy", help="Accept PROXY protocol"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file, rotated at 10 MB"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version",
    ),
):
    """Forward TCP/UDP traffic from listen addresses to remote addresses."""
    if config is not None:
        try:
            cfg = load_config(config)
        except ConfigError as e:
            console.print(f"[red]Error: {escape(str(e))}")
            raise typer.Exit(1) from e

        log_level = resolve_log_level(cfg.global_.loglevel, debug)
        setup_logging(log_level, log_file)
        services = parse_services(cfg)
    else:
        if not listen or not remote:
            console.print("[red]Missing required parameters: --listen and --remote")
            raise typer.Exit(1)

        log_level = resolve_log_level(None, debug)
        setup_logging(log_level, log_file)
        services = [service_from_flags(listen, remote, network_type, send_proxy, accept_proxy)]

    if not services:
        logger.error("No services configured")
        raise typer.Exit(1)

    if log_level != "none":
        show_services(services)

    run_services(services)


if __name__ == "__main__":
    app()
