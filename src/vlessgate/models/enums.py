"""
Enumeration types for VlessGate.

This module defines the enumeration types shared by the tunnel decoder,
the session state machine and the server configuration.
"""

from enum import Enum, IntEnum


# =============================================================================
# Protocol Enums
# =============================================================================


class Command(IntEnum):
    """
    Handshake command byte.

    Only STREAM is relayed. DATAGRAM is named so that rejections can be
    logged with a readable value.
    """

    STREAM = 0x01
    DATAGRAM = 0x02


class AddressType(IntEnum):
    """Handshake address-type tag."""

    IPV4 = 0x01
    DOMAIN = 0x02
    IPV6 = 0x03


# =============================================================================
# Session Enums
# =============================================================================


class SessionState(str, Enum):
    """
    Tunnel session lifecycle state.

    State transitions:
        AWAITING_HEADER -> CONNECTING -> RELAYING -> CLOSED
        AWAITING_HEADER -> CLOSED (decode failure or inbound close)
        CONNECTING -> CLOSED (connect failure or inbound close)
    """

    AWAITING_HEADER = "awaiting_header"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        """Position in the lifecycle, used to keep transitions monotonic."""
        return _STATE_ORDER.index(self)


_STATE_ORDER = [
    SessionState.AWAITING_HEADER,
    SessionState.CONNECTING,
    SessionState.RELAYING,
    SessionState.CLOSED,
]


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels for VlessGate.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
