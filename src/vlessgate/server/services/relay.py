"""
Relay pump between an inbound channel and its upstream socket.

Forwarding is unbuffered: a frame that cannot be written because the
receiving side is already closing is dropped, never queued.
"""

from vlessgate.server.services.events import EventKind, PostEvent, SessionEvent
from vlessgate.server.services.upstream import Upstream
from vlessgate.server.transport import InboundChannel
from vlessgate.tunnel.exceptions import UpstreamTimeout
from vlessgate.utils.logger import get_logger

logger = get_logger(__name__)


class RelayPump:
    """
    Bidirectional byte forwarding for one tunnel session.

    The session calls ``to_upstream`` for every inbound frame and
    ``to_inbound`` for every upstream chunk; ``pump_upstream`` runs as a
    task that turns upstream reads into session events.
    """

    def __init__(self, inbound: InboundChannel, upstream: Upstream, log_prefix: str):
        self.inbound = inbound
        self.upstream = upstream
        self.log_prefix = log_prefix
        self.bytes_up = 0
        self.bytes_down = 0

    async def to_upstream(self, frame: bytes) -> None:
        """Write an inbound frame verbatim to the upstream, or drop it."""
        if not frame:
            return
        if not self.upstream.write(frame):
            logger.debug(
                f"{self.log_prefix} Upstream not writable, dropped {len(frame)} bytes"
            )
            return
        # Handed to the transport without waiting for it to flush
        self.bytes_up += len(frame)

    async def to_inbound(self, chunk: bytes) -> None:
        """
        Send one upstream chunk as one inbound frame, or drop it.

        Raises:
            TransportError: The inbound channel failed while sending.
        """
        if not self.inbound.is_open:
            logger.debug(
                f"{self.log_prefix} Inbound closed, dropped {len(chunk)} bytes"
            )
            return
        await self.inbound.send(chunk)
        self.bytes_down += len(chunk)

    async def pump_upstream(self, post: PostEvent) -> None:
        """Read the upstream until EOF, timeout or error, posting each outcome."""
        try:
            while True:
                chunk = await self.upstream.read()
                if not chunk:
                    post(SessionEvent(EventKind.UPSTREAM_CLOSED))
                    return
                post(SessionEvent(EventKind.UPSTREAM_DATA, data=chunk))
        except UpstreamTimeout as e:
            post(SessionEvent(EventKind.UPSTREAM_TIMEOUT, error=e))
        except OSError as e:
            post(SessionEvent(EventKind.UPSTREAM_ERROR, error=e))
