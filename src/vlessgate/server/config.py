"""
Server configuration for VlessGate.

This module defines the configuration dataclass for the tunnel server.
The configuration is an immutable value: it is built once (from the
environment, then optionally overridden by the CLI) and passed explicitly
to the app factory, every session and the upstream connector.

Usage:
    from dataclasses import replace

    from vlessgate.server.config import ServerConfig

    config = replace(ServerConfig.from_env(), PORT=9000)
"""

import os
from dataclasses import dataclass

from vlessgate.models.enums import LogLevel

DEFAULT_UUID = "a2056d0d-c98e-4aeb-9aab-37f64edd5710"


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass(frozen=True)
class ServerConfig:
    """
    Tunnel server configuration.

    Attributes:
        BIND_IP: IP address to bind the HTTP/WebSocket server to.
        PORT: Listening port.
        UUID: Shared client identifier, published in the subscription link.
        PROXY_IP: Fixed destination host overriding the handshake address.
        SUB_PATH: Path (without leading slash) of the subscription endpoint.
        WS_PATH: Path of the WebSocket tunnel endpoint.
        CONNECT_TIMEOUT: Seconds allowed for the outbound TCP connect.
        IDLE_TIMEOUT: Seconds without upstream data before the session is
            closed. 0 disables the timeout.
        READ_CHUNK_SIZE: Maximum bytes per upstream read (one frame each).
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------

    BIND_IP: str = "0.0.0.0"
    PORT: int = 8000

    # -------------------------------------------------------------------------
    # Tunnel Configuration
    # -------------------------------------------------------------------------

    UUID: str = DEFAULT_UUID
    PROXY_IP: str = ""
    SUB_PATH: str = "sub"
    WS_PATH: str = "/"

    # -------------------------------------------------------------------------
    # Timing Configuration
    # -------------------------------------------------------------------------

    CONNECT_TIMEOUT: float = 10.0
    IDLE_TIMEOUT: float = 0.0
    READ_CHUNK_SIZE: int = 65536

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_destination_override(self) -> str | None:
        """Get the fixed destination host, or None to use the handshake's."""
        return self.PROXY_IP or None

    def get_idle_timeout(self) -> float | None:
        """Get the upstream idle timeout, or None when disabled."""
        return self.IDLE_TIMEOUT if self.IDLE_TIMEOUT > 0 else None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ServerConfig":
        """
        Build a configuration from environment variables.

        Recognised variables: BIND_IP, PORT, UUID, PROXYIP, SUB_PATH, WS_PATH,
        CONNECT_TIMEOUT, IDLE_TIMEOUT, READ_CHUNK_SIZE, LOG_LEVEL. Unset or
        empty variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def _get(name: str, default):
            value = env.get(name)
            if value is None or value == "":
                return default
            return type(default)(value)

        return cls(
            BIND_IP=_get("BIND_IP", defaults.BIND_IP),
            PORT=_get("PORT", defaults.PORT),
            UUID=_get("UUID", defaults.UUID),
            PROXY_IP=env.get("PROXYIP", defaults.PROXY_IP),
            SUB_PATH=_get("SUB_PATH", defaults.SUB_PATH),
            WS_PATH=_get("WS_PATH", defaults.WS_PATH),
            CONNECT_TIMEOUT=_get("CONNECT_TIMEOUT", defaults.CONNECT_TIMEOUT),
            IDLE_TIMEOUT=_get("IDLE_TIMEOUT", defaults.IDLE_TIMEOUT),
            READ_CHUNK_SIZE=_get("READ_CHUNK_SIZE", defaults.READ_CHUNK_SIZE),
            LOG_LEVEL=LogLevel(
                env.get("LOG_LEVEL", "").lower() or defaults.LOG_LEVEL.value
            ),
        )
