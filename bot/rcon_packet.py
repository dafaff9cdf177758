import struct
from dataclasses import dataclass
from typing import List, Union

from rcon_errors import ProtocolError

SERVERDATA_AUTH = 3
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_RESPONSE_VALUE = 0

KNOWN_TYPES = (SERVERDATA_AUTH, SERVERDATA_EXECCOMMAND, SERVERDATA_RESPONSE_VALUE)

# id + type + body NUL + terminator NUL
MIN_PACKET_SIZE = 4 + 4 + 1 + 1
MAX_PACKET_SIZE = 64 * 1024

_SIZE = struct.Struct('<i')
_HEADER = struct.Struct('<ii')


@dataclass(frozen=True)
class Packet:
    id: int
    type: int
    body: bytes = b''

    @property
    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')


def encode_packet(id: int, type: int, body: Union[str, bytes] = b'', max_size: int = MAX_PACKET_SIZE) -> bytes:
    """Serializes one packet, size prefix included."""
    if isinstance(body, str):
        body = body.encode('utf-8')
    if b'\x00' in body:
        raise ValueError("RCON packet body must not contain NUL bytes")
    size = _HEADER.size + len(body) + 2
    if size > max_size:
        raise ValueError(f"RCON packet of {size} bytes exceeds the {max_size} byte limit")
    return _SIZE.pack(size) + _HEADER.pack(id, type) + body + b'\x00\x00'


def decode_packet(payload: bytes) -> Packet:
    """Parses the bytes that follow the size field."""
    if len(payload) < MIN_PACKET_SIZE:
        raise ProtocolError(f"packet too short: {len(payload)} bytes")
    if payload[-2:] != b'\x00\x00':
        raise ProtocolError("packet is missing its NUL terminators")
    id, type = _HEADER.unpack_from(payload)
    if type not in KNOWN_TYPES:
        raise ProtocolError(f"unknown packet type {type}")
    return Packet(id=id, type=type, body=bytes(payload[_HEADER.size:-2]))


class PacketReader:
    """Turns an arbitrary chunked byte stream back into packets."""

    def __init__(self, max_packet_size: int = MAX_PACKET_SIZE):
        self.max_packet_size = max_packet_size
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[Packet]:
        self._buffer.extend(data)
        packets = []
        while len(self._buffer) >= _SIZE.size:
            size = _SIZE.unpack_from(self._buffer)[0]
            # Validate before buffering the body so a corrupt length can't grow the buffer unbounded.
            if size < MIN_PACKET_SIZE or size > self.max_packet_size:
                raise ProtocolError(f"invalid packet size {size}")
            end = _SIZE.size + size
            if len(self._buffer) < end:
                break
            packets.append(decode_packet(bytes(self._buffer[_SIZE.size:end])))
            del self._buffer[:end]
        return packets

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)
