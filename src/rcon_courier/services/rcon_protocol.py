"""RCON packet encoding and decoding.

Every packet on the wire is laid out as::

    int32 size | int32 request_id | int32 type | body (UTF-8) | 0x00 0x00

All integers are little-endian and signed; ``size`` counts every byte that
follows it. This module is pure and performs no I/O.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

SERVERDATA_AUTH = 3
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_RESPONSE_VALUE = 0

# Request id echoed by the server when authentication is rejected.
AUTH_REJECTED_ID = -1

AUTH_REQUEST_ID = 1
COMMAND_REQUEST_ID = 2

_SIZE = struct.Struct("<i")
_HEADER = struct.Struct("<ii")
_TERMINATOR = b"\x00\x00"

SIZE_PREFIX_LENGTH = _SIZE.size
# id + type + terminator; the smallest legal value of the size field.
MIN_PACKET_SIZE = _HEADER.size + len(_TERMINATOR)
DEFAULT_MAX_PACKET_SIZE = 1024 * 1024


class FrameError(ValueError):
    """Raised when bytes on the wire do not form a valid packet."""


@dataclass(frozen=True)
class Packet:
    """A decoded RCON packet."""

    request_id: int
    type: int
    body: str

    @property
    def is_auth_rejection(self) -> bool:
        """Return True if the peer rejected the authentication secret."""
        return self.request_id == AUTH_REJECTED_ID


def encode_packet(request_id: int, packet_type: int, body: str) -> bytes:
    """Build the wire frame for a single packet."""
    payload = body.encode("utf-8")
    size = _HEADER.size + len(payload) + len(_TERMINATOR)
    return _SIZE.pack(size) + _HEADER.pack(request_id, packet_type) + payload + _TERMINATOR


def auth_packet(secret: str, request_id: int = AUTH_REQUEST_ID) -> bytes:
    """Return an authenticate frame carrying ``secret``."""
    return encode_packet(request_id, SERVERDATA_AUTH, secret)


def command_packet(command: str, request_id: int = COMMAND_REQUEST_ID) -> bytes:
    """Return an execute-command frame for ``command``."""
    return encode_packet(request_id, SERVERDATA_EXECCOMMAND, command)


def read_size(prefix: bytes, max_size: int = DEFAULT_MAX_PACKET_SIZE) -> int:
    """Parse and validate the 4-byte size prefix of a frame."""
    if len(prefix) != SIZE_PREFIX_LENGTH:
        raise FrameError(
            f"Size prefix must be {SIZE_PREFIX_LENGTH} bytes, got {len(prefix)}"
        )
    (size,) = _SIZE.unpack(prefix)
    if size < MIN_PACKET_SIZE:
        raise FrameError(f"Declared packet size {size} is below the minimum {MIN_PACKET_SIZE}")
    if size > max_size:
        raise FrameError(f"Declared packet size {size} exceeds the limit of {max_size}")
    return size


def decode_payload(payload: bytes) -> Packet:
    """Decode the bytes that follow the size prefix.

    The trailing two terminator bytes are stripped; the body is decoded as
    UTF-8 with undecodable bytes replaced rather than rejected.
    """
    if len(payload) < MIN_PACKET_SIZE:
        raise FrameError(f"Packet payload too short: {len(payload)} bytes")
    request_id, packet_type = _HEADER.unpack_from(payload)
    body = payload[_HEADER.size:-len(_TERMINATOR)].decode("utf-8", errors="replace")
    return Packet(request_id=request_id, type=packet_type, body=body)


def decode_packet(data: bytes, max_size: int = DEFAULT_MAX_PACKET_SIZE) -> Packet:
    """Decode one complete frame, size prefix included.

    Raises:
        FrameError: If fewer bytes than the declared size are present.
    """
    size = read_size(data[:SIZE_PREFIX_LENGTH], max_size)
    payload = data[SIZE_PREFIX_LENGTH:SIZE_PREFIX_LENGTH + size]
    if len(payload) < size:
        raise FrameError(f"Truncated packet: expected {size} bytes, got {len(payload)}")
    return decode_payload(payload)
