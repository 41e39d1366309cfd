"""
Upstream connector for tunnel sessions.

Opens the outbound TCP connection named by a decoded handshake (or the
configured destination override) and wraps it as an Upstream owned by the
session that requested it.
"""

import asyncio

from vlessgate.server.config import ServerConfig
from vlessgate.tunnel.exceptions import UpstreamConnectError, UpstreamTimeout
from vlessgate.tunnel.protocol import ConnectionRequest
from vlessgate.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Upstream Socket
# =============================================================================


class Upstream:
    """
    An established outbound TCP connection.

    Writes never block: data is handed to the transport buffer as-is and
    never awaited. Reads return one chunk at a time and honour the idle
    timeout.
    """

    def __init__(
        self,
        host: str,
        port: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        idle_timeout: float | None = None,
        chunk_size: int = 65536,
    ):
        self.host = host
        self.port = port
        self.reader = reader
        self.writer = writer
        self.idle_timeout = idle_timeout
        self.chunk_size = chunk_size
        self._destroyed = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def writable(self) -> bool:
        """True while the socket accepts writes."""
        return not self._destroyed and not self.writer.is_closing()

    def write(self, data: bytes) -> bool:
        """
        Queue data on the socket.

        Returns:
            False if the socket is closing or destroyed and the data was
            dropped, True otherwise.
        """
        if not self.writable:
            return False
        self.writer.write(data)
        return True

    async def read(self) -> bytes:
        """
        Read the next chunk.

        Returns:
            Up to ``chunk_size`` bytes, or b"" at EOF.

        Raises:
            UpstreamTimeout: No data arrived within the idle timeout.
            OSError: The socket failed.
        """
        if self.idle_timeout is None:
            return await self.reader.read(self.chunk_size)
        try:
            return await asyncio.wait_for(
                self.reader.read(self.chunk_size), timeout=self.idle_timeout
            )
        except asyncio.TimeoutError:
            raise UpstreamTimeout(self.host, self.port, self.idle_timeout)

    def destroy(self) -> None:
        """
        Close the socket immediately. Safe to call more than once.

        Unsent data still buffered for a peer that stopped reading is
        discarded so the socket does not linger.
        """
        if self._destroyed:
            return
        self._destroyed = True
        transport = self.writer.transport
        if transport.get_write_buffer_size():
            transport.abort()
        else:
            self.writer.close()
        logger.debug(f"[Upstream {self.address}] Destroyed")


# =============================================================================
# Connector
# =============================================================================


class UpstreamConnector:
    """Establishes outbound connections for tunnel sessions."""

    def __init__(self, config: ServerConfig):
        self.config = config

    def resolve_target(self, request: ConnectionRequest) -> tuple[str, int]:
        """Effective (host, port): destination override wins over the handshake."""
        host = self.config.get_destination_override() or request.hostname
        return host, request.port

    async def connect(self, request: ConnectionRequest) -> Upstream:
        """
        Open the outbound connection for a decoded handshake.

        Nothing stays allocated when this raises. The attempt is never
        retried.

        Raises:
            UpstreamTimeout: Connect did not finish within CONNECT_TIMEOUT.
            UpstreamConnectError: Connection refused, DNS failure, etc.
        """
        host, port = self.resolve_target(request)
        timeout = self.config.CONNECT_TIMEOUT

        logger.debug(f"[Upstream {host}:{port}] Connecting (timeout={timeout}s)")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise UpstreamTimeout(host, port, timeout)
        except (OSError, ValueError) as e:
            # ValueError covers host names the IDNA codec rejects
            raise UpstreamConnectError(host, port, str(e) or type(e).__name__)

        logger.debug(f"[Upstream {host}:{port}] Connected")
        return Upstream(
            host,
            port,
            reader,
            writer,
            idle_timeout=self.config.get_idle_timeout(),
            chunk_size=self.config.READ_CHUNK_SIZE,
        )
