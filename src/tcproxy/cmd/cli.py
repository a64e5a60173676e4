"""Command-line interface for the static TCP proxy.

This module provides the command-line entry point, handling:
- Option parsing into a validated ``ProxyConfig``
- Logging setup from the verbosity level
- Optional live status panel
- Server lifecycle and Ctrl+C handling

When either the listening or the remote address is missing, the help page
is printed and nothing else happens.

Example:
    # Run from command line:
    $ tcproxy --lhost 127.0.0.1:9000 --rhost example.com:80 -w 127.0.0.1 -v 2
"""

from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from tcproxy import __version__
from tcproxy.core.config import (
    DEFAULT_BACKLOG,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_READ_TIMEOUT_MS,
    ProxyConfig,
    parse_endpoint,
    parse_whitelist,
)
from tcproxy.core.exceptions import ConfigError
from tcproxy.core.lib.proxy_server import ProxyServer
from tcproxy.core.utils.log_config import configure_logging
from tcproxy.core.utils.status_ui import create_status_ui

console = Console()
app = typer.Typer(
    help="TCProxy - Static TCP proxy",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"[cyan]TCProxy v{__version__}[/cyan]")
        raise typer.Exit()


def build_config(
    lhost: str,
    rhost: str,
    blocksize: int,
    whitelist: str | None,
    verbosity: int,
    backlog: int,
    timeout: int,
) -> ProxyConfig:
    """Turn raw option values into a validated configuration.

    Raises:
        ConfigError: If an address or value is invalid
    """
    listen_host, listen_port = parse_endpoint(lhost)
    remote_host, remote_port = parse_endpoint(rhost)
    return ProxyConfig(
        listen_host=listen_host,
        listen_port=listen_port,
        remote_host=remote_host,
        remote_port=remote_port,
        backlog=backlog,
        read_timeout_ms=timeout,
        block_size=blocksize,
        verbosity=verbosity,
        whitelist=parse_whitelist(whitelist),
    )


def run_proxy(config: ProxyConfig, show_ui: bool = False) -> None:
    """Start the proxy and block until it stops or Ctrl+C is pressed."""
    server = ProxyServer(config)
    ui = None
    if show_ui:
        ui, ui_thread = create_status_ui(server)
        ui_thread.start()
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
        console.print("\n[yellow]Shutting down proxy server...")
    finally:
        if ui is not None:
            ui.running = False


@app.command()
def main(
    ctx: typer.Context,
    lhost: str | None = typer.Option(None, "--lhost", "-l", help="Address to listen on (host:port)"),
    rhost: str | None = typer.Option(None, "--rhost", "-r", help="Remote address to route to (host:port)"),
    blocksize: int = typer.Option(DEFAULT_BLOCK_SIZE, "--blocksize", "-b", help="Bytes to read per socket cycle"),
    whitelist: str | None = typer.Option(None, "--whitelist", "-w", help="Hosts to whitelist (host1,host2,..)"),
    verbosity: int = typer.Option(
        1, "--verbosity", "-v", help="Verbosity level: 0 = none, 1 = verbose, 2 = very verbose"
    ),
    backlog: int = typer.Option(DEFAULT_BACKLOG, "--backlog", help="Pending connection queue size"),
    timeout: int = typer.Option(DEFAULT_READ_TIMEOUT_MS, "--timeout", "-t", help="Socket read timeout in milliseconds"),
    ui: bool = typer.Option(False, "--ui", help="Show a live status panel"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also log to this file, with rotation"),
    version: bool = typer.Option(
        False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Route every connection made to LHOST to RHOST."""
    if not lhost or not rhost:
        typer.echo(ctx.get_help())
        return

    try:
        config = build_config(lhost, rhost, blocksize, whitelist, verbosity, backlog, timeout)
    except ConfigError as e:
        console.print(f"[red]Error: {e}")
        raise typer.Exit(1) from e

    configure_logging(config.verbosity, log_file)
    logger.debug(f"Starting with {config}")
    run_proxy(config, show_ui=ui)


if __name__ == "__main__":
    app()
