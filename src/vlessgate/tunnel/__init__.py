"""
VLESS handshake codec.

This module provides the binary handshake decoder used by tunnel sessions
and the matching encoder used by clients and tests.
"""

from vlessgate.tunnel.exceptions import (
    HeaderDecodeError,
    HeaderTooShort,
    TransportError,
    TunnelError,
    UnknownAddressType,
    UnsupportedCommand,
    UpstreamConnectError,
    UpstreamTimeout,
)
from vlessgate.tunnel.protocol import (
    MIN_HEADER_SIZE,
    AddressSpec,
    ConnectionRequest,
    DomainAddress,
    IPv4Address,
    IPv6Address,
    build_ack,
    build_header,
    decode_header,
    format_address,
    get_payload,
)

__all__ = [
    "MIN_HEADER_SIZE",
    "AddressSpec",
    "ConnectionRequest",
    "DomainAddress",
    "IPv4Address",
    "IPv6Address",
    "build_ack",
    "build_header",
    "decode_header",
    "format_address",
    "get_payload",
    "TunnelError",
    "HeaderDecodeError",
    "HeaderTooShort",
    "UnsupportedCommand",
    "UnknownAddressType",
    "UpstreamConnectError",
    "UpstreamTimeout",
    "TransportError",
]
