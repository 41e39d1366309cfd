"""
VlessGate FastAPI Application.

Serves the WebSocket tunnel endpoint plus two plain-text HTTP endpoints:
a status page and a base64 subscription link for clients.
"""

import base64

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse

from vlessgate import __version__
from vlessgate.models.enums import LogLevel
from vlessgate.server.config import ServerConfig
from vlessgate.server.services.session import TunnelSession
from vlessgate.server.services.upstream import UpstreamConnector
from vlessgate.server.transport import WebSocketInbound
from vlessgate.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

# Plain HTTP routes answer regardless of method
HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


# =============================================================================
# Subscription Link
# =============================================================================


def strip_port(host: str) -> str:
    """Drop a trailing :port from a Host header value (IPv6 literals kept)."""
    if host.startswith("["):
        return host[: host.index("]") + 1] if "]" in host else host
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def build_share_link(config: ServerConfig, host: str) -> str:
    """
    Build the vless:// share link advertised for a host.

    Args:
        config: Server configuration (UUID, WS_PATH)
        host: Public host name clients connect to (port is ignored)

    Returns:
        The share link
    """
    hostname = strip_port(host)
    label = hostname.split(".")[0]
    return (
        f"vless://{config.UUID}@{hostname}:80"
        f"?encryption=none&security=none&type=ws"
        f"&host={hostname}&path={config.WS_PATH}#Node-{label}"
    )


def build_subscription(config: ServerConfig, host: str) -> str:
    """Base64-encoded subscription body for a host."""
    link = build_share_link(config, host)
    return base64.b64encode(link.encode("utf-8")).decode("ascii")


# =============================================================================
# App Factory
# =============================================================================


def create_app(config: ServerConfig) -> FastAPI:
    """
    Create the FastAPI app for a configuration.

    One TunnelSession runs per accepted WebSocket; sessions share only the
    read-only config and the connector, which holds no per-connection state.
    """
    app = FastAPI(
        title="VlessGate",
        description="VLESS over WebSocket tunnel server",
        version=__version__,
    )
    app.state.config = config
    connector = UpstreamConnector(config)

    @app.websocket(config.WS_PATH)
    async def websocket_tunnel(websocket: WebSocket):
        """WebSocket endpoint carrying one tunnel session."""
        await websocket.accept()
        session = TunnelSession(WebSocketInbound(websocket), config, connector)
        client = websocket.client
        logger.debug(
            f"{session.log_prefix} Accepted from "
            f"{client.host if client else 'unknown'}"
        )
        await session.run()

    @app.api_route(
        f"/{config.SUB_PATH}", methods=HTTP_METHODS, response_class=PlainTextResponse
    )
    async def subscription(request: Request):
        """Base64 subscription with this server's share link."""
        host = request.headers.get("host", "localhost")
        return PlainTextResponse(
            build_subscription(config, host),
            media_type="text/plain; charset=utf-8",
        )

    @app.api_route(
        "/{path:path}", methods=HTTP_METHODS, response_class=PlainTextResponse
    )
    async def status(path: str = ""):
        """Plain-text liveness page."""
        return PlainTextResponse(f"VlessGate Server is Running.\nUUID: {config.UUID}")

    return app


# =============================================================================
# Server Entry Points
# =============================================================================


def run(config: ServerConfig | None = None):
    """Run the tunnel server using uvicorn."""
    import uvicorn

    config = config or ServerConfig.from_env()

    # Configure logging before starting uvicorn
    configure_logging(config.LOG_LEVEL)

    # Map log levels to uvicorn levels
    uvicorn_level_map = {
        LogLevel.FULL: "debug",
        LogLevel.DEBUG: "debug",
        LogLevel.INFO: "info",
        LogLevel.WARNING: "warning",
    }
    uvicorn_level = uvicorn_level_map.get(config.LOG_LEVEL, "info")

    logger.info(f"VlessGate server running on port {config.PORT}")
    logger.info(f"UUID: {config.UUID}")
    if config.PROXY_IP:
        logger.info(f"Destination override: {config.PROXY_IP}")

    uvicorn.run(
        create_app(config),
        host=config.BIND_IP,
        port=config.PORT,
        log_level=uvicorn_level,
        log_config=None,  # Keep uvicorn on the loguru intercept handler
    )


def main():
    """Entry point for the tunnel server."""
    run()


if __name__ == "__main__":
    main()
