"""
Inbound framed transport.

A tunnel session talks to its client through the InboundChannel interface:
whole frames in, whole frames out, and a close. WebSocketInbound implements
it on top of a FastAPI/Starlette WebSocket.
"""

from typing import Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from vlessgate.tunnel.exceptions import TransportError


class InboundChannel(Protocol):
    """Framed duplex channel consumed by TunnelSession."""

    @property
    def is_open(self) -> bool: ...

    async def receive(self) -> bytes | None:
        """Next frame, or None once the peer has closed."""
        ...

    async def send(self, frame: bytes) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class WebSocketInbound:
    """
    InboundChannel over an accepted WebSocket.

    Binary messages are used verbatim. Text messages are UTF-8 encoded so
    that clients which send the handshake as text still work.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> bytes | None:
        try:
            message = await self.websocket.receive()
        except RuntimeError as e:
            self._closed = True
            raise TransportError(str(e)) from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            return None

        data = message.get("bytes")
        if data is not None:
            return data
        text = message.get("text")
        return text.encode("utf-8") if text is not None else b""

    async def send(self, frame: bytes) -> None:
        try:
            await self.websocket.send_bytes(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise TransportError(f"Failed to send frame: {e}") from e

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError):
            # Peer already gone
            pass
