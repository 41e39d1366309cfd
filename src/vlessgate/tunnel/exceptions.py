"""Tunnel-related exception classes."""


class TunnelError(Exception):
    """Base exception for tunnel operations."""

    pass


# =============================================================================
# Handshake Decoding
# =============================================================================


class HeaderDecodeError(TunnelError):
    """The first inbound frame is not a usable handshake."""

    pass


class HeaderTooShort(HeaderDecodeError):
    """Handshake is shorter than the fields it must contain."""

    def __init__(self, length: int, required: int):
        self.length = length
        self.required = required
        super().__init__(f"Header too short: {length} bytes, need {required}")


class UnsupportedCommand(HeaderDecodeError):
    """Handshake command is not stream (TCP) traffic."""

    def __init__(self, value: int):
        self.value = value
        super().__init__(f"Unsupported command: {value} (only TCP)")


class UnknownAddressType(HeaderDecodeError):
    """Handshake address-type tag is not IPv4, domain or IPv6."""

    def __init__(self, value: int):
        self.value = value
        super().__init__(f"Unknown address type: {value}")


# =============================================================================
# Upstream / Transport
# =============================================================================


class UpstreamConnectError(TunnelError):
    """Outbound TCP connection could not be established."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Failed to connect to {host}:{port}: {reason}")


class UpstreamTimeout(TunnelError):
    """Outbound connect or read did not complete in time."""

    def __init__(self, host: str, port: int, timeout: float):
        self.host = host
        self.port = port
        self.timeout = timeout
        super().__init__(f"Timeout after {timeout}s on {host}:{port}")


class TransportError(TunnelError):
    """The inbound framed transport failed."""

    pass
