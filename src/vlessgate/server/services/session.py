"""
Tunnel session for one inbound connection.

A TunnelSession decodes the handshake in the first inbound frame, opens the
upstream named by it and relays bytes until either side goes away. Every
notification (inbound frame/close/error, connect result, upstream
data/close/error/timeout) is posted to a single per-session queue and the
session loop applies the transition table below in arrival order:

    AWAITING_HEADER  frame, decode ok       -> CONNECTING  start connect
    AWAITING_HEADER  frame, decode fails    -> CLOSED      close inbound
    CONNECTING       frame                  -> CONNECTING  hold frame
    CONNECTING       connected              -> RELAYING    ack, flush payload
    CONNECTING       connect failed         -> CLOSED      close inbound
    RELAYING         frame                  -> RELAYING    forward upstream
    RELAYING         upstream data          -> RELAYING    forward inbound
    RELAYING         upstream close/error   -> CLOSED      close inbound
    any              inbound close/error    -> CLOSED      destroy upstream
"""

import asyncio
import uuid

from vlessgate.models.enums import SessionState
from vlessgate.server.config import ServerConfig
from vlessgate.server.services.events import (
    INBOUND_TERMINAL,
    UPSTREAM_TERMINAL,
    EventKind,
    SessionEvent,
)
from vlessgate.server.services.relay import RelayPump
from vlessgate.server.services.upstream import Upstream, UpstreamConnector
from vlessgate.server.transport import InboundChannel
from vlessgate.tunnel.exceptions import (
    HeaderDecodeError,
    TransportError,
    UpstreamConnectError,
    UpstreamTimeout,
)
from vlessgate.tunnel.protocol import (
    ConnectionRequest,
    build_ack,
    decode_header,
    get_payload,
)
from vlessgate.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


class TunnelSession:
    """
    Per-connection state machine.

    The session owns its upstream socket from the moment the connector
    hands it over and releases it on every exit path of ``run``.
    """

    def __init__(
        self,
        inbound: InboundChannel,
        config: ServerConfig,
        connector: UpstreamConnector | None = None,
        session_id: str | None = None,
    ):
        self.inbound = inbound
        self.config = config
        self.connector = connector or UpstreamConnector(config)
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.log_prefix = f"[Session {self.session_id}]"

        self.state = SessionState.AWAITING_HEADER
        self.request: ConnectionRequest | None = None
        self.upstream: Upstream | None = None
        self.relay: RelayPump | None = None
        self.decode_count = 0
        self.close_reason = ""

        self._residual = b""
        self._held: list[bytes] = []
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Event plumbing
    # -------------------------------------------------------------------------

    def post(self, event: SessionEvent) -> None:
        """Queue a notification for the session loop."""
        self._events.put_nowait(event)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _read_inbound(self) -> None:
        """Turn inbound frames and closure into events."""
        try:
            while True:
                frame = await self.inbound.receive()
                if frame is None:
                    self.post(SessionEvent(EventKind.INBOUND_CLOSED))
                    return
                self.post(SessionEvent(EventKind.INBOUND_FRAME, data=frame))
        except TransportError as e:
            self.post(SessionEvent(EventKind.INBOUND_ERROR, error=e))

    async def _connect(self, request: ConnectionRequest) -> None:
        try:
            upstream = await self.connector.connect(request)
        except (UpstreamConnectError, UpstreamTimeout) as e:
            self.post(SessionEvent(EventKind.UPSTREAM_FAILED, error=e))
            return
        self.post(SessionEvent(EventKind.UPSTREAM_CONNECTED, upstream=upstream))

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Drive the session until it is closed."""
        logger.debug(f"{self.log_prefix} Session started")
        self._spawn(self._read_inbound())
        try:
            while self.state != SessionState.CLOSED:
                event = await self._events.get()
                try:
                    await self.handle_event(event)
                except Exception as e:
                    logger.error(f"{self.log_prefix} Unexpected error: {e}")
                    logger.debug(format_traceback(e))
                    await self._close("internal error")
        finally:
            await self._shutdown()

    async def handle_event(self, event: SessionEvent) -> None:
        """Apply one event to the state machine."""
        if self.state == SessionState.CLOSED:
            return

        if event.kind in INBOUND_TERMINAL:
            if event.error is not None:
                logger.warning(f"{self.log_prefix} Inbound error: {event.error}")
            await self._close("inbound closed")
            return

        match self.state:
            case SessionState.AWAITING_HEADER:
                await self._on_awaiting_header(event)
            case SessionState.CONNECTING:
                await self._on_connecting(event)
            case SessionState.RELAYING:
                await self._on_relaying(event)

    # -------------------------------------------------------------------------
    # State handlers
    # -------------------------------------------------------------------------

    async def _on_awaiting_header(self, event: SessionEvent) -> None:
        if event.kind != EventKind.INBOUND_FRAME:
            logger.debug(f"{self.log_prefix} Ignoring {event.kind.name} before header")
            return

        self.decode_count += 1
        try:
            request = decode_header(event.data)
        except HeaderDecodeError as e:
            logger.warning(f"{self.log_prefix} Header error: {e}")
            await self._close("header error")
            return

        self.request = request
        self._residual = get_payload(event.data, request)
        self._check_user_id(request)

        host, port = self.connector.resolve_target(request)
        logger.info(
            f"{self.log_prefix} Connecting {request.hostname}:{request.port} "
            f"-> {host}:{port}"
        )
        self._transition(SessionState.CONNECTING)
        self._spawn(self._connect(request))

    async def _on_connecting(self, event: SessionEvent) -> None:
        match event.kind:
            case EventKind.INBOUND_FRAME:
                # Flushed after the residual payload once connected
                self._held.append(event.data)
            case EventKind.UPSTREAM_CONNECTED:
                await self._on_connected(event.upstream)
            case EventKind.UPSTREAM_FAILED:
                logger.warning(f"{self.log_prefix} Remote error: {event.error}")
                await self._close("connect failed")
            case _:
                logger.debug(
                    f"{self.log_prefix} Ignoring {event.kind.name} while connecting"
                )

    async def _on_connected(self, upstream: Upstream) -> None:
        self.upstream = upstream
        self.relay = RelayPump(self.inbound, upstream, self.log_prefix)

        try:
            await self.inbound.send(build_ack(self.request.version))
        except TransportError as e:
            logger.debug(f"{self.log_prefix} Failed to send ack: {e}")
            await self._close("inbound closed")
            return

        self._transition(SessionState.RELAYING)
        logger.info(f"{self.log_prefix} Tunnel established to {upstream.address}")

        held, self._held = self._held, []
        await self.relay.to_upstream(self._residual)
        self._residual = b""
        for frame in held:
            await self.relay.to_upstream(frame)

        self._spawn(self.relay.pump_upstream(self.post))

    async def _on_relaying(self, event: SessionEvent) -> None:
        match event.kind:
            case EventKind.INBOUND_FRAME:
                await self.relay.to_upstream(event.data)
            case EventKind.UPSTREAM_DATA:
                try:
                    await self.relay.to_inbound(event.data)
                except TransportError as e:
                    logger.debug(f"{self.log_prefix} {e}")
                    await self._close("inbound closed")
            case kind if kind in UPSTREAM_TERMINAL:
                if event.error is not None:
                    logger.warning(
                        f"{self.log_prefix} Remote error: {self.upstream.address} - "
                        f"{event.error}"
                    )
                await self._close(kind.name.lower())
            case _:
                logger.debug(
                    f"{self.log_prefix} Ignoring {event.kind.name} while relaying"
                )

    # -------------------------------------------------------------------------
    # Transitions and teardown
    # -------------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state.rank <= self.state.rank:
            raise RuntimeError(
                f"Illegal session transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"{self.log_prefix} {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def _close(self, reason: str) -> None:
        """Enter CLOSED: release the upstream, then close the inbound channel."""
        if self.state == SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        self.close_reason = reason

        if self.upstream is not None:
            self.upstream.destroy()
            self.upstream = None
        await self.inbound.close()

    async def _shutdown(self) -> None:
        if self.state != SessionState.CLOSED:
            self.state = SessionState.CLOSED
            self.close_reason = self.close_reason or "cancelled"

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # A connect may have completed after the session closed
        while not self._events.empty():
            event = self._events.get_nowait()
            if event.upstream is not None:
                event.upstream.destroy()

        if self.upstream is not None:
            self.upstream.destroy()
            self.upstream = None
        await self.inbound.close()

        if self.relay is not None:
            logger.info(
                f"{self.log_prefix} Closed ({self.close_reason}), "
                f"up={self.relay.bytes_up}B down={self.relay.bytes_down}B"
            )
        else:
            logger.debug(f"{self.log_prefix} Closed ({self.close_reason})")

    def _check_user_id(self, request: ConnectionRequest) -> None:
        # Not enforced: the handshake id is only compared for visibility
        try:
            expected = uuid.UUID(self.config.UUID)
        except ValueError:
            return
        if request.user_id != expected:
            logger.warning(
                f"{self.log_prefix} Handshake id {request.user_id} does not match "
                f"configured UUID (not enforced)"
            )
