"""Events that drive the tunnel session state machine."""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

from vlessgate.server.services.upstream import Upstream


class EventKind(Enum):
    """Notification sources of a tunnel session."""

    INBOUND_FRAME = auto()
    INBOUND_CLOSED = auto()
    INBOUND_ERROR = auto()
    UPSTREAM_CONNECTED = auto()
    UPSTREAM_FAILED = auto()
    UPSTREAM_DATA = auto()
    UPSTREAM_CLOSED = auto()
    UPSTREAM_ERROR = auto()
    UPSTREAM_TIMEOUT = auto()


INBOUND_TERMINAL = frozenset({EventKind.INBOUND_CLOSED, EventKind.INBOUND_ERROR})
UPSTREAM_TERMINAL = frozenset(
    {EventKind.UPSTREAM_CLOSED, EventKind.UPSTREAM_ERROR, EventKind.UPSTREAM_TIMEOUT}
)


@dataclass
class SessionEvent:
    """A single entry in a session's event queue."""

    kind: EventKind
    data: bytes = b""
    upstream: Upstream | None = None
    error: Exception | None = None


PostEvent = Callable[[SessionEvent], None]
