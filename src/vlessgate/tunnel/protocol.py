"""
VLESS handshake definitions and decoder.

Wire format of the first inbound frame (binary, big-endian, L = addon length):
┌────────┬──────────┬────────┬──────────┬────────┬─────────┬─────────┬─────────┐
│Ver(1B) │ UUID(16B)│ L (1B) │ Addon(L) │Cmd(1B) │Port(2B) │Type(1B) │ Address │ Payload
└────────┴──────────┴────────┴──────────┴────────┴─────────┴─────────┴─────────┘

Address, by type:
    0x01 IPv4    4 bytes
    0x02 Domain  1 byte length n + n bytes UTF-8
    0x03 IPv6    16 bytes (8 big-endian 16-bit groups)

Response (acknowledgment) frame: Ver(1B) + 0x00 = 2 bytes
"""

import struct
import uuid
from dataclasses import dataclass

from vlessgate.models.enums import AddressType, Command
from vlessgate.tunnel.exceptions import (
    HeaderTooShort,
    UnknownAddressType,
    UnsupportedCommand,
)

# =============================================================================
# Header Layout
# =============================================================================

MIN_HEADER_SIZE = 24

VERSION_OFFSET = 0
USER_ID_OFFSET = 1
USER_ID_SIZE = 16
ADDON_LEN_OFFSET = 17
COMMAND_OFFSET = 18  # + L

PORT_FORMAT = ">H"
IPV6_FORMAT = ">8H"

IPV4_SIZE = 4
IPV6_SIZE = 16
MAX_DOMAIN_SIZE = 255

# Ack: version echo + reserved addon length
ACK_FORMAT = ">BB"


# =============================================================================
# Address Spec
# =============================================================================


@dataclass(frozen=True)
class IPv4Address:
    """IPv4 target, 4 raw bytes."""

    packed: bytes


@dataclass(frozen=True)
class DomainAddress:
    """Domain-name target."""

    name: str


@dataclass(frozen=True)
class IPv6Address:
    """IPv6 target, 8 unsigned 16-bit groups."""

    groups: tuple[int, ...]


AddressSpec = IPv4Address | DomainAddress | IPv6Address


def format_address(address: AddressSpec) -> str:
    """
    Render an AddressSpec as a host string suitable for a TCP connect.

    IPv4 is dotted decimal, IPv6 is eight lowercase hex groups joined
    by colons (no zero compression), domains are returned as-is.
    """
    match address:
        case IPv4Address(packed=packed):
            return ".".join(str(octet) for octet in packed)
        case DomainAddress(name=name):
            return name
        case IPv6Address(groups=groups):
            return ":".join(f"{group:x}" for group in groups)
    raise TypeError(f"Not an address spec: {address!r}")


# =============================================================================
# Connection Request
# =============================================================================


@dataclass(frozen=True)
class ConnectionRequest:
    """Decoded handshake of a tunnel session."""

    version: int
    command: Command
    address: AddressSpec
    port: int
    payload_offset: int
    user_id: uuid.UUID

    @property
    def hostname(self) -> str:
        """Target address rendered as a string."""
        return format_address(self.address)


def _require(buffer: bytes, end: int) -> None:
    if len(buffer) < end:
        raise HeaderTooShort(len(buffer), end)


def decode_header(buffer: bytes) -> ConnectionRequest:
    """
    Decode the handshake at the start of the first inbound frame.

    Args:
        buffer: The complete first frame.

    Returns:
        Parsed ConnectionRequest. Bytes from ``payload_offset`` on are
        tunnel payload and must be forwarded.

    Raises:
        HeaderTooShort: Frame is under 24 bytes or ends inside a field.
        UnsupportedCommand: Command byte is not 1 (stream).
        UnknownAddressType: Address-type tag is not 1, 2 or 3.
    """
    if len(buffer) < MIN_HEADER_SIZE:
        raise HeaderTooShort(len(buffer), MIN_HEADER_SIZE)

    version = buffer[VERSION_OFFSET]
    user_id = uuid.UUID(
        bytes=bytes(buffer[USER_ID_OFFSET : USER_ID_OFFSET + USER_ID_SIZE])
    )
    addon_len = buffer[ADDON_LEN_OFFSET]

    command_idx = COMMAND_OFFSET + addon_len
    _require(buffer, command_idx + 1)
    command = buffer[command_idx]
    if command != Command.STREAM:
        raise UnsupportedCommand(command)

    port_idx = command_idx + 1
    addr_idx = port_idx + 2
    _require(buffer, addr_idx + 1)
    (port,) = struct.unpack_from(PORT_FORMAT, buffer, port_idx)
    addr_type = buffer[addr_idx]

    if addr_type == AddressType.IPV4:
        end = addr_idx + 1 + IPV4_SIZE
        _require(buffer, end)
        address = IPv4Address(bytes(buffer[addr_idx + 1 : end]))
        payload_offset = end
    elif addr_type == AddressType.DOMAIN:
        _require(buffer, addr_idx + 2)
        length = buffer[addr_idx + 1]
        end = addr_idx + 2 + length
        _require(buffer, end)
        name = bytes(buffer[addr_idx + 2 : end]).decode("utf-8", errors="replace")
        address = DomainAddress(name)
        payload_offset = end
    elif addr_type == AddressType.IPV6:
        end = addr_idx + 1 + IPV6_SIZE
        _require(buffer, end)
        address = IPv6Address(struct.unpack_from(IPV6_FORMAT, buffer, addr_idx + 1))
        payload_offset = end
    else:
        raise UnknownAddressType(addr_type)

    return ConnectionRequest(
        version=version,
        command=Command.STREAM,
        address=address,
        port=port,
        payload_offset=payload_offset,
        user_id=user_id,
    )


def get_payload(buffer: bytes, request: ConnectionRequest) -> bytes:
    """Extract the tunnel payload that follows the handshake in a frame."""
    return bytes(buffer[request.payload_offset :])


def build_ack(version: int) -> bytes:
    """Build the 2-byte acknowledgment frame sent once upstream is open."""
    return struct.pack(ACK_FORMAT, version, 0)


# =============================================================================
# Handshake Encoding
# =============================================================================


def build_header(
    user_id: uuid.UUID,
    address: AddressSpec,
    port: int,
    command: int = Command.STREAM,
    version: int = 0,
    addon: bytes = b"",
    payload: bytes = b"",
) -> bytes:
    """
    Build a handshake frame (client side of the protocol).

    Used by tooling and tests to talk to the server.

    Args:
        user_id: Client identifier
        address: Target address
        port: Target port
        command: Command byte (STREAM by default)
        version: Protocol version byte
        addon: Opaque addon region
        payload: Tunnel payload appended after the header

    Returns:
        Complete frame as bytes
    """
    header = bytes([version]) + user_id.bytes + bytes([len(addon)]) + addon
    header += bytes([command]) + struct.pack(PORT_FORMAT, port)

    match address:
        case IPv4Address(packed=packed):
            header += bytes([AddressType.IPV4]) + packed
        case DomainAddress(name=name):
            encoded = name.encode("utf-8")
            if len(encoded) > MAX_DOMAIN_SIZE:
                raise ValueError(f"Domain name too long: {len(encoded)} bytes")
            header += bytes([AddressType.DOMAIN, len(encoded)]) + encoded
        case IPv6Address(groups=groups):
            header += bytes([AddressType.IPV6]) + struct.pack(IPV6_FORMAT, *groups)

    return header + payload
