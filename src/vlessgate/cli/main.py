"""
VlessGate CLI entry point.

Usage:
    vlessgate [OPTIONS] COMMAND [ARGS]...

Commands:
    serve     Run the tunnel server
    link      Print the share link for a host
    version   Show version information
"""

from dataclasses import replace
from typing import Annotated

import typer
from rich.console import Console

from vlessgate.models.enums import LogLevel
from vlessgate.server.config import ServerConfig

console = Console()

app = typer.Typer(
    name="vlessgate",
    help="VLESS over WebSocket tunnel server",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.command("serve")
def serve(
    host: Annotated[
        str | None,
        typer.Option("--host", "-H", help="Bind address", envvar="BIND_IP"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Listen port", envvar="PORT"),
    ] = None,
    uuid: Annotated[
        str | None,
        typer.Option("--uuid", "-u", help="Client identifier", envvar="UUID"),
    ] = None,
    proxy_ip: Annotated[
        str | None,
        typer.Option(
            "--proxy-ip", help="Fixed destination host override", envvar="PROXYIP"
        ),
    ] = None,
    sub_path: Annotated[
        str | None,
        typer.Option("--sub-path", help="Subscription path", envvar="SUB_PATH"),
    ] = None,
    ws_path: Annotated[
        str | None,
        typer.Option("--ws-path", help="Tunnel WebSocket path", envvar="WS_PATH"),
    ] = None,
    connect_timeout: Annotated[
        float | None,
        typer.Option(
            "--connect-timeout",
            help="Outbound connect timeout in seconds",
            envvar="CONNECT_TIMEOUT",
        ),
    ] = None,
    idle_timeout: Annotated[
        float | None,
        typer.Option(
            "--idle-timeout",
            help="Close tunnels idle for this many seconds (0 = never)",
            envvar="IDLE_TIMEOUT",
        ),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Log level", envvar="LOG_LEVEL"),
    ] = None,
):
    """Run the tunnel server."""
    from vlessgate.server.app import run

    overrides = {
        "BIND_IP": host,
        "PORT": port,
        "UUID": uuid,
        "PROXY_IP": proxy_ip,
        "SUB_PATH": sub_path,
        "WS_PATH": ws_path,
        "CONNECT_TIMEOUT": connect_timeout,
        "IDLE_TIMEOUT": idle_timeout,
        "LOG_LEVEL": log_level,
    }
    config = replace(
        ServerConfig.from_env(),
        **{key: value for key, value in overrides.items() if value is not None},
    )
    run(config)


@app.command("link")
def link(
    host: Annotated[str, typer.Argument(help="Public host name of the server")],
    uuid: Annotated[
        str | None,
        typer.Option("--uuid", "-u", help="Client identifier", envvar="UUID"),
    ] = None,
):
    """Print the share link and subscription body for a host."""
    from vlessgate.server.app import build_share_link, build_subscription

    config = ServerConfig.from_env()
    if uuid:
        config = replace(config, UUID=uuid)

    console.print("[bold]Share link:[/bold]")
    console.print(build_share_link(config, host), markup=False, soft_wrap=True)
    console.print("[bold]Subscription:[/bold]")
    console.print(build_subscription(config, host), markup=False, soft_wrap=True)


@app.command("version")
def version():
    """Show version information."""
    from vlessgate import __version__

    console.print(f"VlessGate v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
