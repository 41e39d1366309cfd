#!/usr/bin/env python3
"""
Smoke test for a running VlessGate server.

This script sets up:
1. A local TCP echo server (the tunnel destination)
2. WebSocket clients speaking the VLESS handshake to the server

Then performs tests to verify:
- The acknowledgment frame echoes the handshake version
- Payload carried in the handshake frame reaches the destination
- Data flows in both directions
- Rejected handshakes close the WebSocket
- Concurrent sessions stay independent

Usage:
    vlessgate serve --port 8000 &
    python scripts/smoke_test_server.py [--url ws://127.0.0.1:8000/]

Requirements:
    - The server must be able to reach 127.0.0.1 (run it on this machine)
"""

import argparse
import asyncio
import sys
import uuid

import websockets

from vlessgate.server.config import DEFAULT_UUID
from vlessgate.tunnel.protocol import DomainAddress, IPv4Address, build_header

# =============================================================================
# Configuration
# =============================================================================

ECHO_SERVER_PORT = 19876
LOOPBACK = IPv4Address(bytes([127, 0, 0, 1]))

# Colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
CYAN = "\033[96m"
RESET = "\033[0m"


def log_info(msg: str) -> None:
    print(f"{CYAN}[INFO]{RESET} {msg}")


def log_ok(msg: str) -> None:
    print(f"{GREEN}[PASS]{RESET} {msg}")


def log_fail(msg: str) -> None:
    print(f"{RED}[FAIL]{RESET} {msg}")


def log_warn(msg: str) -> None:
    print(f"{YELLOW}[WARN]{RESET} {msg}")


# =============================================================================
# Echo Server (tunnel destination)
# =============================================================================


class EchoServer:
    """Simple TCP echo server."""

    def __init__(self, port: int):
        self.port = port
        self.server = None

    async def start(self) -> None:
        self.server = await asyncio.start_server(
            self._handle_client, "127.0.0.1", self.port
        )
        log_info(f"Echo server listening on 127.0.0.1:{self.port}")

    async def stop(self) -> None:
        if self.server:
            self.server.close()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except OSError as e:
            log_warn(f"Echo: Connection error: {e}")
        finally:
            writer.close()


# =============================================================================
# Tests
# =============================================================================


async def recv_exactly(ws, size: int, timeout: float = 5.0) -> bytes:
    """Collect frames until ``size`` bytes arrived."""
    buffer = b""
    while len(buffer) < size:
        buffer += await asyncio.wait_for(ws.recv(), timeout=timeout)
    return buffer


async def test_echo(url: str, user_id: uuid.UUID) -> bool:
    header = build_header(
        user_id, LOOPBACK, ECHO_SERVER_PORT, version=0, payload=b"hello"
    )
    async with websockets.connect(url) as ws:
        await ws.send(header)
        ack = await asyncio.wait_for(ws.recv(), timeout=5.0)
        if ack != b"\x00\x00":
            log_fail(f"Unexpected ack: {ack!r}")
            return False

        if await recv_exactly(ws, 5) != b"hello":
            log_fail("Handshake payload was not echoed")
            return False

        await ws.send(b" world")
        if await recv_exactly(ws, 6) != b" world":
            log_fail("Relayed frame was not echoed")
            return False

    log_ok("Handshake, ack and echo")
    return True


async def test_rejected_command(url: str, user_id: uuid.UUID) -> bool:
    header = build_header(user_id, DomainAddress("example.com"), 53, command=2)
    async with websockets.connect(url) as ws:
        await ws.send(header)
        try:
            frame = await asyncio.wait_for(ws.recv(), timeout=5.0)
        except websockets.exceptions.ConnectionClosed:
            log_ok("UDP command closes the connection")
            return True
    log_fail(f"Expected close, got frame {frame!r}")
    return False


async def test_concurrent(url: str, user_id: uuid.UUID, count: int = 10) -> bool:
    async def one(index: int) -> bool:
        payload = f"session-{index}".encode()
        header = build_header(user_id, LOOPBACK, ECHO_SERVER_PORT, payload=payload)
        async with websockets.connect(url) as ws:
            await ws.send(header)
            await asyncio.wait_for(ws.recv(), timeout=5.0)
            return await recv_exactly(ws, len(payload)) == payload

    results = await asyncio.gather(*(one(i) for i in range(count)))
    if all(results):
        log_ok(f"{count} concurrent sessions")
        return True
    log_fail(f"{results.count(False)}/{count} concurrent sessions failed")
    return False


async def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test a VlessGate server")
    parser.add_argument("--url", default="ws://127.0.0.1:8000/", help="Tunnel URL")
    parser.add_argument("--uuid", default=DEFAULT_UUID, help="Client identifier")
    args = parser.parse_args()

    user_id = uuid.UUID(args.uuid)
    echo_server = EchoServer(ECHO_SERVER_PORT)
    await echo_server.start()

    all_passed = True
    try:
        for test in (test_echo, test_rejected_command, test_concurrent):
            try:
                all_passed &= await test(args.url, user_id)
            except (OSError, asyncio.TimeoutError) as e:
                log_fail(f"{test.__name__}: {e}")
                all_passed = False
    finally:
        await echo_server.stop()

    print()
    if all_passed:
        log_ok("All tests passed!")
        return 0
    log_fail("Some tests failed!")
    return 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)
