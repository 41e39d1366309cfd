"""Tests for the handshake decoder."""

import struct
import uuid

import pytest

from vlessgate.models.enums import Command
from vlessgate.tunnel.exceptions import (
    HeaderTooShort,
    UnknownAddressType,
    UnsupportedCommand,
)
from vlessgate.tunnel.protocol import (
    MIN_HEADER_SIZE,
    DomainAddress,
    IPv4Address,
    IPv6Address,
    build_ack,
    build_header,
    decode_header,
    format_address,
    get_payload,
)

USER = uuid.UUID("a2056d0d-c98e-4aeb-9aab-37f64edd5710")


def raw_header(
    addon: bytes = b"",
    command: int = 1,
    port: bytes = b"\x00\x50",
    address: bytes = b"\x01\x5d\xb8\xd8\x22",
    version: int = 0,
) -> bytes:
    """Hand-assembled handshake, independent of build_header."""
    return (
        bytes([version])
        + USER.bytes
        + bytes([len(addon)])
        + addon
        + bytes([command])
        + port
        + address
    )


@pytest.mark.unit
class TestHeaderLength:
    def test_23_bytes_is_too_short(self):
        with pytest.raises(HeaderTooShort) as excinfo:
            decode_header(bytes(23))
        assert excinfo.value.length == 23
        assert excinfo.value.required == MIN_HEADER_SIZE

    @pytest.mark.parametrize("length", [0, 1, 17, 18, 22])
    def test_short_buffers_never_reach_command(self, length):
        # Command byte 2 would raise UnsupportedCommand if it were read
        buffer = bytes([0] * 18 + [2] * 6)[:length]
        with pytest.raises(HeaderTooShort):
            decode_header(buffer)

    def test_addon_pushing_fields_past_end(self):
        buffer = raw_header(addon=b"\x00" * 10)[:24]
        with pytest.raises(HeaderTooShort):
            decode_header(buffer)

    def test_truncated_ipv6_address(self):
        buffer = raw_header(address=b"\x03" + b"\x00" * 8)
        with pytest.raises(HeaderTooShort):
            decode_header(buffer)

    def test_truncated_domain(self):
        buffer = raw_header(address=b"\x02\x0aexample")
        with pytest.raises(HeaderTooShort):
            decode_header(buffer)


@pytest.mark.unit
class TestCommand:
    def test_udp_command_rejected(self):
        with pytest.raises(UnsupportedCommand) as excinfo:
            decode_header(raw_header(command=2))
        assert excinfo.value.value == 2

    @pytest.mark.parametrize("command", [0, 3, 0x7F, 0xFF])
    def test_any_non_stream_command_rejected(self, command):
        with pytest.raises(UnsupportedCommand):
            decode_header(raw_header(command=command))

    def test_command_rejected_regardless_of_address(self):
        # Address type 9 is invalid but must not be looked at
        buffer = raw_header(command=2, address=b"\x09" + b"\xff" * 4)
        with pytest.raises(UnsupportedCommand):
            decode_header(buffer)

    def test_command_read_after_addon(self):
        addon = b"\x01" * 5
        request = decode_header(raw_header(addon=addon, command=1))
        assert request.command == Command.STREAM

        with pytest.raises(UnsupportedCommand) as excinfo:
            decode_header(raw_header(addon=b"\x01\x02\x03", command=2))
        assert excinfo.value.value == 2


@pytest.mark.unit
class TestAddresses:
    def test_ipv4_scenario(self):
        request = decode_header(raw_header())
        assert request.hostname == "93.184.216.34"
        assert request.port == 80
        assert request.address == IPv4Address(bytes([93, 184, 216, 34]))
        assert request.payload_offset == 21 + 5

    def test_domain(self):
        name = "example.com"
        address = bytes([2, len(name)]) + name.encode()
        buffer = raw_header(port=b"\x01\xbb", address=address) + b"GET /"
        request = decode_header(buffer)

        addr_idx = 21
        assert request.hostname == "example.com"
        assert request.port == 443
        assert request.payload_offset == addr_idx + 2 + len(name)
        assert get_payload(buffer, request) == b"GET /"

    def test_domain_utf8(self):
        name = "bücher.de".encode("utf-8")
        request = decode_header(raw_header(address=bytes([2, len(name)]) + name))
        assert request.address == DomainAddress("bücher.de")

    def test_ipv6(self):
        groups = (0x2001, 0x0DB8, 0, 0, 0, 0xFF00, 0x0042, 0x8329)
        address = b"\x03" + struct.pack(">8H", *groups)
        request = decode_header(raw_header(address=address))

        assert request.address == IPv6Address(groups)
        assert request.hostname == "2001:db8:0:0:0:ff00:42:8329"
        assert request.payload_offset == 21 + 17

    def test_unknown_address_type(self):
        with pytest.raises(UnknownAddressType) as excinfo:
            decode_header(raw_header(address=b"\x04" + b"\x00" * 16))
        assert excinfo.value.value == 4

    def test_port_is_big_endian(self):
        request = decode_header(raw_header(port=b"\xff\xfe"))
        assert request.port == 65534


@pytest.mark.unit
class TestRequestFields:
    def test_version_and_user_id(self):
        request = decode_header(raw_header(version=7))
        assert request.version == 7
        assert request.user_id == USER

    def test_payload_preserved(self):
        buffer = raw_header() + b"\x00payload\xff"
        request = decode_header(buffer)
        assert buffer[request.payload_offset :] == b"\x00payload\xff"

    def test_decode_does_not_mutate(self):
        buffer = bytearray(raw_header() + b"data")
        snapshot = bytes(buffer)
        decode_header(buffer)
        assert bytes(buffer) == snapshot


@pytest.mark.unit
class TestEncoding:
    def test_ack(self):
        assert build_ack(0) == b"\x00\x00"
        assert build_ack(0xAB) == b"\xab\x00"

    def test_build_header_matches_wire_layout(self):
        built = build_header(
            USER, IPv4Address(bytes([93, 184, 216, 34])), 80, addon=b"xyz"
        )
        assert built == raw_header(addon=b"xyz")

    def test_build_header_rejects_long_domain(self):
        with pytest.raises(ValueError):
            build_header(USER, DomainAddress("a" * 256), 80)

    def test_format_address_rejects_other_types(self):
        with pytest.raises(TypeError):
            format_address("127.0.0.1")
