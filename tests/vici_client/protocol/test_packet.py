"""Tests for packet encoding and decoding."""

import pytest

from vici_client.errors import ProtocolError
from vici_client.protocol.message import Message
from vici_client.protocol.packet import Packet, PacketType, decode_packet, encode_packet


class TestPacketConstruction:
    """Name and message invariants per packet type."""

    def test_named_types_require_name(self):
        """Register packets without a name are invalid."""
        with pytest.raises(ValueError):
            Packet(PacketType.EVENT_REGISTER)

    def test_unnamed_types_reject_name(self):
        """Confirm packets cannot carry a name."""
        with pytest.raises(ValueError):
            Packet(PacketType.EVENT_CONFIRM, "test-event")

    def test_message_only_where_allowed(self):
        """Register packets cannot carry a message."""
        with pytest.raises(ValueError):
            Packet(PacketType.EVENT_REGISTER, "log", Message())

    def test_message_defaults_to_empty(self):
        """Message-carrying packets get an empty message by default."""
        assert Packet(PacketType.CMD_RESPONSE).message == Message()
        assert Packet(PacketType.EVENT_CONFIRM).message is None

    def test_name_too_long(self):
        """Names are limited to 255 bytes."""
        with pytest.raises(ValueError):
            Packet(PacketType.CMD_REQUEST, "x" * 256)


class TestEncoding:
    """Wire layout."""

    def test_confirm(self):
        """Unnamed, message-less packets are a single type byte."""
        assert encode_packet(Packet(PacketType.EVENT_CONFIRM)) == b"\x05"

    def test_register(self):
        """Named packets carry a length-prefixed name."""
        assert encode_packet(Packet(PacketType.EVENT_REGISTER, "log")) == b"\x03\x03log"

    def test_command_request(self):
        """Command requests carry the command name followed by the message."""
        message = Message({"a": "b"})
        assert encode_packet(Packet(PacketType.CMD_REQUEST, "version", message)) == b"\x00\x07version" + message.encode()


class TestDecoding:
    """decode_packet reverses encode_packet and rejects malformed frames."""

    @pytest.mark.parametrize(
        "packet",
        [
            Packet(PacketType.CMD_REQUEST, "initiate", Message({"child": "net", "timeout": 1000})),
            Packet(PacketType.CMD_RESPONSE, message=Message({"success": "yes"})),
            Packet(PacketType.CMD_UNKNOWN),
            Packet(PacketType.EVENT_UNREGISTER, "ike-updown"),
            Packet(PacketType.EVENT_UNKNOWN),
            Packet(PacketType.EVENT, "test-event", Message({"test": "hello world!"})),
        ],
        ids=lambda p: p.type.name,
    )
    def test_round_trip(self, packet: Packet):
        """Decoding an encoded packet yields an equal packet."""
        assert decode_packet(encode_packet(packet)) == packet

    def test_empty(self):
        """An empty frame is rejected."""
        with pytest.raises(ProtocolError, match="Empty"):
            decode_packet(b"")

    def test_unknown_type(self):
        """Unknown type tags are rejected."""
        with pytest.raises(ProtocolError, match="Unknown packet type 99"):
            decode_packet(b"\x63")

    def test_truncated_name(self):
        """A name shorter than its declared length is rejected."""
        with pytest.raises(ProtocolError):
            decode_packet(b"\x07\x0atest")

    def test_missing_name_length(self):
        """A named packet without a name length is rejected."""
        with pytest.raises(ProtocolError):
            decode_packet(b"\x03")

    def test_trailing_bytes(self):
        """Data after a message-less packet is rejected."""
        with pytest.raises(ProtocolError, match="trailing"):
            decode_packet(b"\x05\x00")

    def test_malformed_message(self):
        """Message decoding errors surface as ProtocolError."""
        with pytest.raises(ProtocolError):
            decode_packet(b"\x01\x09")
