"""Source RCON wire protocol encoding and decoding."""

from __future__ import annotations

import random
import struct
from dataclasses import dataclass
from enum import IntEnum

from srcrcon.errors import PacketTooLarge, TruncatedFrame


class PacketType(IntEnum):
    """RCON packet types.

    EXEC_COMMAND and AUTH_RESPONSE share a wire value; which one a reply means
    depends on the request that provoked it.
    """

    RESPONSE_VALUE = 0
    EXEC_COMMAND = 2
    AUTH_RESPONSE = 2
    AUTH = 3


SIZE_PREFIX = 4
# 4 bytes each for request_id and type, plus the two null terminators
MIN_PACKET_SIZE = 10
MAX_PACKET_SIZE = 4096
MAX_BODY_SIZE = MAX_PACKET_SIZE - MIN_PACKET_SIZE
AUTH_FAILED_ID = -1

_HEADER = struct.Struct("<iii")
_TERMINATOR = b"\x00\x00"


def new_request_id() -> int:
    """Return a random non-negative 31-bit request id."""
    return random.getrandbits(31)


def read_size(prefix: bytes) -> int:
    """Unpack the 4-byte little-endian size prefix of a frame."""
    (size,) = struct.unpack("<i", prefix)
    return size


@dataclass(frozen=True)
class Packet:
    """A single RCON packet.

    Wire format: [size:i32][request_id:i32][type:i32][body][\\0\\0]
    Size covers everything after itself (req_id + type + body + 2 nulls).
    """

    request_id: int
    packet_type: int
    body: bytes = b""

    @property
    def size(self) -> int:
        """Value of the size field for this packet."""
        return len(self.body) + MIN_PACKET_SIZE

    def validate(self) -> None:
        """Raise PacketTooLarge if the packet exceeds the wire ceiling."""
        if self.size > MAX_PACKET_SIZE:
            msg = (
                f"Packet size {self.size} exceeds maximum of {MAX_PACKET_SIZE}"
                f" (body is {len(self.body)} bytes, limit {MAX_BODY_SIZE})"
            )
            raise PacketTooLarge(msg)

    def encode(self) -> bytes:
        """Encode the packet into bytes for transmission."""
        self.validate()
        return (
            _HEADER.pack(self.size, self.request_id, self.packet_type)
            + self.body
            + _TERMINATOR
        )

    @classmethod
    def decode(cls, data: bytes) -> Packet:
        """Decode a packet from a complete frame, size prefix included.

        Short frames are tolerated: a declared size of 0, or fewer body bytes
        than the size announces, yields an empty body. Only a frame missing
        part of its 12-byte header raises TruncatedFrame.
        """
        if len(data) < _HEADER.size:
            msg = (
                f"Frame of {len(data)} bytes is shorter than"
                f" the {_HEADER.size}-byte header"
            )
            raise TruncatedFrame(msg)

        size, request_id, packet_type = _HEADER.unpack_from(data, 0)
        body_size = size - MIN_PACKET_SIZE
        body_start = _HEADER.size
        body_end = body_start + body_size
        if size == 0 or body_size <= 0 or body_end > len(data):
            return cls(request_id=request_id, packet_type=packet_type, body=b"")

        return cls(
            request_id=request_id,
            packet_type=packet_type,
            body=data[body_start:body_end],
        )
