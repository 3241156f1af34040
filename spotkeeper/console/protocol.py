"""Console wire format.

Every packet is a little-endian frame::

    int32  length        bytes that follow this field
    int32  request id    echoed by the peer in its replies
    int32  packet type
    bytes  payload       UTF-8 text, null-terminated
    byte   padding       a second null

so ``length == 4 + 4 + len(payload) + 2``.
"""

from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass

AUTH = 3
AUTH_RESPONSE = 2
EXEC_COMMAND = 2
RESPONSE_VALUE = 0

AUTH_FAILED_ID = -1

MIN_PACKET_LENGTH = 10
MAX_PACKET_LENGTH = 1024 * 1024
MAX_COMMAND_BYTES = 1446

_LENGTH = struct.Struct("<i")
_HEADER = struct.Struct("<ii")


class PacketError(ValueError):
    """Raised when bytes on the wire do not form a valid packet."""


@dataclass(frozen=True)
class Packet:
    request_id: int
    packet_type: int
    payload: str = ""


def encode_packet(packet: Packet) -> bytes:
    """Serialise *packet* into a length-prefixed frame."""
    body = _HEADER.pack(packet.request_id, packet.packet_type)
    body += packet.payload.encode("utf-8") + b"\x00\x00"
    return _LENGTH.pack(len(body)) + body


def decode_length(prefix: bytes) -> int:
    """Decode and validate the 4-byte length prefix."""
    (length,) = _LENGTH.unpack(prefix)
    if not MIN_PACKET_LENGTH <= length <= MAX_PACKET_LENGTH:
        raise PacketError(f"Invalid packet length: {length}")
    return length


def decode_body(body: bytes) -> Packet:
    """Decode the bytes following the length prefix."""
    if len(body) < MIN_PACKET_LENGTH:
        raise PacketError(f"Packet too short: {len(body)} bytes")
    if body[-2:] != b"\x00\x00":
        raise PacketError("Packet is missing its null terminators")
    request_id, packet_type = _HEADER.unpack_from(body)
    payload = body[_HEADER.size:-2].decode("utf-8", errors="replace")
    return Packet(request_id, packet_type, payload)


async def read_packet(reader: asyncio.StreamReader) -> Packet:
    """Read one complete packet from *reader*.

    Raises :class:`asyncio.IncompleteReadError` if the peer closes mid-frame.
    """
    length = decode_length(await reader.readexactly(_LENGTH.size))
    return decode_body(await reader.readexactly(length))
