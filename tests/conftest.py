"""
Pytest fixtures for VlessGate.

Provides a scripted inbound channel, small local TCP servers standing in for
tunnel destinations, and handshake builders.
"""

import asyncio
import uuid

import pytest
import pytest_asyncio

from vlessgate.server.config import ServerConfig
from vlessgate.tunnel.exceptions import TransportError
from vlessgate.tunnel.protocol import IPv4Address, build_header

TEST_UUID = uuid.UUID("a2056d0d-c98e-4aeb-9aab-37f64edd5710")
LOOPBACK = IPv4Address(bytes([127, 0, 0, 1]))


# =============================================================================
# Inbound Channel
# =============================================================================


class FakeInbound:
    """
    Scripted InboundChannel.

    Frames fed with ``feed`` are returned by ``receive`` in order; ``hang_up``
    makes ``receive`` report closure. Everything the session does to the
    channel is recorded in ``log`` as ("send", frame) or ("close", None).
    """

    def __init__(self):
        self.incoming: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.log: list[tuple[str, bytes | None]] = []
        self.closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return not self.closed.is_set()

    @property
    def sent(self) -> list[bytes]:
        return [data for action, data in self.log if action == "send"]

    def feed(self, frame: bytes) -> None:
        self.incoming.put_nowait(frame)

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    async def receive(self) -> bytes | None:
        return await self.incoming.get()

    async def send(self, frame: bytes) -> None:
        if self.closed.is_set():
            raise TransportError("channel closed")
        self.log.append(("send", frame))

    async def close(self, code: int = 1000) -> None:
        if not self.closed.is_set():
            self.log.append(("close", None))
            self.closed.set()


# =============================================================================
# Local TCP Servers
# =============================================================================


class LocalServer:
    """asyncio TCP server on 127.0.0.1 with a pluggable connection handler."""

    def __init__(self, handler):
        self.handler = handler
        self.server: asyncio.AbstractServer | None = None
        self.port = 0
        self.received = bytearray()
        self.finished = asyncio.Event()
        self.release = asyncio.Event()
        self._writers: list[asyncio.StreamWriter] = []

    async def start(self) -> "LocalServer":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self.release.set()
        for writer in self._writers:
            writer.close()
        self.server.close()
        await self.server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.append(writer)
        try:
            await self.handler(self, reader, writer)
        except OSError:
            pass
        finally:
            writer.close()
            self.finished.set()


async def echo_handler(server: LocalServer, reader, writer) -> None:
    while True:
        data = await reader.read(4096)
        if not data:
            break
        server.received.extend(data)
        writer.write(data)
        await writer.drain()


async def record_handler(server: LocalServer, reader, writer) -> None:
    while True:
        data = await reader.read(4096)
        if not data:
            break
        server.received.extend(data)


async def goodbye_handler(server: LocalServer, reader, writer) -> None:
    writer.write(b"bye")
    await writer.drain()


async def stalled_handler(server: LocalServer, reader, writer) -> None:
    """Never reads; greets once, then holds the connection until stopped."""
    await asyncio.sleep(0.2)
    writer.write(b"hello")
    await writer.drain()
    await server.release.wait()


@pytest_asyncio.fixture
async def echo_server():
    server = await LocalServer(echo_handler).start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def record_server():
    server = await LocalServer(record_handler).start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def goodbye_server():
    server = await LocalServer(goodbye_handler).start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def silent_server():
    server = await LocalServer(record_handler).start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def stalled_server():
    server = await LocalServer(stalled_handler).start()
    yield server
    await server.stop()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    import socket

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


# =============================================================================
# Config / Handshake
# =============================================================================


@pytest.fixture
def config():
    return ServerConfig(UUID=str(TEST_UUID), CONNECT_TIMEOUT=2.0)


@pytest.fixture
def fake_inbound():
    return FakeInbound()


def loopback_header(port: int, payload: bytes = b"", version: int = 0) -> bytes:
    """Handshake for a loopback destination."""
    return build_header(TEST_UUID, LOOPBACK, port, version=version, payload=payload)


async def wait_until(predicate, timeout: float = 3.0) -> None:
    """Poll a predicate until it holds or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
