"""VICI packets: one typed protocol unit per frame.

Layout after the frame length prefix:

    u8 type | [u8 name length, name]  (named types only) | [message]  (message-carrying types only)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from vici_client.errors import ProtocolError
from vici_client.protocol.message import MAX_NAME_LENGTH, Message


class PacketType(IntEnum):
    """Packet type tags."""

    CMD_REQUEST = 0
    CMD_RESPONSE = 1
    CMD_UNKNOWN = 2
    EVENT_REGISTER = 3
    EVENT_UNREGISTER = 4
    EVENT_CONFIRM = 5
    EVENT_UNKNOWN = 6
    EVENT = 7

    @property
    def is_named(self) -> bool:
        """Whether packets of this type carry a name."""
        return self in _NAMED

    @property
    def has_message(self) -> bool:
        """Whether packets of this type carry a message."""
        return self in _WITH_MESSAGE


_NAMED = frozenset({PacketType.CMD_REQUEST, PacketType.EVENT_REGISTER, PacketType.EVENT_UNREGISTER, PacketType.EVENT})
_WITH_MESSAGE = frozenset({PacketType.CMD_REQUEST, PacketType.CMD_RESPONSE, PacketType.EVENT})


@dataclass(frozen=True)
class Packet:
    """A single protocol packet.

    ``name`` is the command name for CMD_REQUEST and the event name for the event
    register/unregister/delivery types; it is empty for all other types.
    ``message`` is None for types that carry no message.
    """

    type: PacketType
    name: str = ""
    message: Message | None = None

    def __post_init__(self) -> None:
        if self.type.is_named:
            size = len(self.name.encode())
            if not 0 < size <= MAX_NAME_LENGTH:
                msg = f"{self.type.name} packet needs a name of 1..{MAX_NAME_LENGTH} bytes, got {size}"
                raise ValueError(msg)
        elif self.name:
            msg = f"{self.type.name} packet cannot carry a name"
            raise ValueError(msg)
        if self.message is not None and not self.type.has_message:
            msg = f"{self.type.name} packet cannot carry a message"
            raise ValueError(msg)
        if self.message is None and self.type.has_message:
            object.__setattr__(self, "message", Message())


def encode_packet(packet: Packet) -> bytes:
    """Serialize a packet without the frame length prefix."""
    buf = bytearray((packet.type,))
    if packet.type.is_named:
        name = packet.name.encode()
        buf.append(len(name))
        buf += name
    if packet.message is not None:
        buf += packet.message.encode()
    return bytes(buf)


def decode_packet(data: bytes) -> Packet:
    """Parse a packet from one frame's payload.

    Raises:
        ProtocolError: Empty frame, unknown type, truncated name, or unexpected trailing data.

    """
    if not data:
        raise ProtocolError("Empty packet")
    try:
        ptype = PacketType(data[0])
    except ValueError:
        msg = f"Unknown packet type {data[0]}"
        raise ProtocolError(msg) from None

    pos = 1
    name = ""
    if ptype.is_named:
        if len(data) < 2:
            msg = f"Truncated {ptype.name} packet: missing name length"
            raise ProtocolError(msg)
        size = data[1]
        pos = 2 + size
        if size == 0 or len(data) < pos:
            msg = f"Truncated or empty name in {ptype.name} packet"
            raise ProtocolError(msg)
        try:
            name = data[2:pos].decode()
        except UnicodeDecodeError:
            msg = f"{ptype.name} packet name is not valid UTF-8"
            raise ProtocolError(msg) from None

    if ptype.has_message:
        return Packet(ptype, name, Message.decode(data[pos:]))
    if len(data) > pos:
        msg = f"Unexpected {len(data) - pos} trailing bytes in {ptype.name} packet"
        raise ProtocolError(msg)
    return Packet(ptype, name)
