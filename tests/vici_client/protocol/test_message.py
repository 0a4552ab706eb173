"""Tests for the Message document and its codec."""

import pytest

from vici_client.errors import CommandFailedError, ProtocolError, TypeMismatchError
from vici_client.protocol.message import MAX_VALUE_LENGTH, ElementType, Message


@pytest.fixture
def conn_message() -> Message:
    """A connection definition with values, a nested section and lists."""
    return Message(
        {
            "version": "2",
            "local_addrs": ["192.0.2.1", "192.0.2.2"],
            "children": {"net": {"mode": "tunnel", "esp_proposals": ["aes256gcm16", "default"]}},
            "mobike": True,
        }
    )


class TestBuilder:
    """set / get and value normalization."""

    def test_get_scalar(self):
        """A scalar set with set() is returned by get()."""
        msg = Message()
        msg.set("test", "hello world!")
        assert msg.get("test") == "hello world!"

    def test_absent_vs_empty(self):
        """An absent key is None, an empty value is the empty string."""
        msg = Message({"empty": ""})
        assert msg.get("missing") is None
        assert msg.get("empty") == ""
        assert "empty" in msg
        assert "missing" not in msg

    def test_last_write_wins_keeps_position(self):
        """Overwriting a key replaces the value but keeps its first position."""
        msg = Message({"a": "1", "b": "2"})
        msg.set("a", "3")
        assert msg.keys() == ["a", "b"]
        assert msg["a"] == "3"

    def test_normalization(self):
        """bool, int, bytes, mappings and tuples are normalized."""
        msg = Message({"yes": True, "no": False, "port": 500, "raw": b"\x00\xff", "sec": {"k": "v"}, "tup": ("a", 1)})
        assert msg["yes"] == "yes"
        assert msg["no"] == "no"
        assert msg["port"] == "500"
        assert isinstance(msg["sec"], Message)
        assert msg["tup"] == ["a", "1"]

    def test_unsupported_value_type(self):
        """Values that have no wire form are rejected."""
        with pytest.raises(TypeMismatchError):
            Message().set("x", 1.5)

    def test_key_too_long(self):
        """Keys longer than 255 bytes are rejected at set time."""
        with pytest.raises(ValueError, match="1..255"):
            Message().set("k" * 256, "v")

    def test_empty_key(self):
        """Empty keys are rejected."""
        with pytest.raises(ValueError):
            Message().set("", "v")

    def test_value_too_long(self):
        """Values longer than 65535 bytes are rejected at set time."""
        with pytest.raises(ValueError):
            Message().set("k", "v" * (MAX_VALUE_LENGTH + 1))

    def test_delete(self):
        """delete() reports whether the key existed."""
        msg = Message({"a": "1"})
        assert msg.delete("a") is True
        assert msg.delete("a") is False
        assert len(msg) == 0


class TestTypedAccessors:
    """Shape-checked accessors."""

    def test_matching_shapes(self, conn_message: Message):
        """Each accessor returns its own shape."""
        assert conn_message.get_str("version") == "2"
        assert conn_message.get_list("local_addrs") == ["192.0.2.1", "192.0.2.2"]
        children = conn_message.get_section("children")
        assert children is not None
        assert children.get_section("net") is not None

    def test_absent_is_none(self, conn_message: Message):
        """Absent keys return None from every accessor."""
        assert conn_message.get_str("nope") is None
        assert conn_message.get_section("nope") is None
        assert conn_message.get_list("nope") is None

    def test_section_as_scalar(self, conn_message: Message):
        """Requesting a section as a scalar is a type mismatch."""
        with pytest.raises(TypeMismatchError):
            conn_message.get_str("children")

    def test_scalar_as_section(self, conn_message: Message):
        """Requesting a scalar as a section is a type mismatch."""
        with pytest.raises(TypeMismatchError):
            conn_message.get_section("version")

    def test_list_as_scalar(self, conn_message: Message):
        """Requesting a list as a scalar is a type mismatch."""
        with pytest.raises(TypeMismatchError):
            conn_message.get_str("local_addrs")

    def test_type_mismatch_is_type_error(self, conn_message: Message):
        """TypeMismatchError can be caught as a TypeError."""
        with pytest.raises(TypeError):
            conn_message.get_list("children")


class TestEncoding:
    """Byte layout of encoded elements."""

    def test_key_value(self):
        """KEY_VALUE: type, name length, name, u16 value length, value."""
        assert Message({"a": "xy"}).encode() == bytes([ElementType.KEY_VALUE, 1]) + b"a" + b"\x00\x02xy"

    def test_section(self):
        """Sections are framed by start and end markers."""
        encoded = Message({"s": {"k": "v"}}).encode()
        assert encoded == (
            bytes([ElementType.SECTION_START, 1])
            + b"s"
            + bytes([ElementType.KEY_VALUE, 1])
            + b"k\x00\x01v"
            + bytes([ElementType.SECTION_END])
        )

    def test_list(self):
        """Lists are framed by start and end markers around length-prefixed items."""
        encoded = Message({"l": ["a", "bc"]}).encode()
        assert encoded == (
            bytes([ElementType.LIST_START, 1])
            + b"l"
            + bytes([ElementType.LIST_ITEM])
            + b"\x00\x01a"
            + bytes([ElementType.LIST_ITEM])
            + b"\x00\x02bc"
            + bytes([ElementType.LIST_END])
        )

    def test_empty_message(self):
        """An empty message encodes to nothing."""
        assert Message().encode() == b""


class TestDecoding:
    """decode() reverses encode() and rejects malformed input."""

    def test_round_trip(self, conn_message: Message):
        """Decoding an encoded message yields an equal message, order included."""
        decoded = Message.decode(conn_message.encode())
        assert decoded == conn_message
        assert decoded.keys() == conn_message.keys()

    def test_binary_value_round_trip(self):
        """Non-UTF-8 values survive a decode/encode cycle."""
        raw = Message({"cert": b"\x30\x82\xff\xfe"}).encode()
        assert Message.decode(raw).encode() == raw

    def test_order_matters_for_equality(self):
        """Messages with the same entries in a different order are not equal."""
        assert Message({"a": "1", "b": "2"}) != Message({"b": "2", "a": "1"})

    def test_truncated_value(self):
        """A value shorter than its declared length is rejected."""
        data = Message({"a": "xyz"}).encode()[:-1]
        with pytest.raises(ProtocolError, match="Truncated"):
            Message.decode(data)

    def test_truncated_name(self):
        """A name shorter than its declared length is rejected."""
        with pytest.raises(ProtocolError):
            Message.decode(bytes([ElementType.KEY_VALUE, 5]) + b"ab")

    def test_unknown_element(self):
        """Unknown element types are rejected."""
        with pytest.raises(ProtocolError, match="Unknown"):
            Message.decode(b"\x09")

    def test_unterminated_section(self):
        """A section without an end marker is rejected."""
        data = Message({"s": {"k": "v"}}).encode()[:-1]
        with pytest.raises(ProtocolError, match="unterminated"):
            Message.decode(data)

    def test_unbalanced_section_end(self):
        """A section end at top level is rejected."""
        with pytest.raises(ProtocolError):
            Message.decode(bytes([ElementType.SECTION_END]))

    def test_list_item_outside_list(self):
        """List items outside of a list are rejected."""
        with pytest.raises(ProtocolError):
            Message.decode(bytes([ElementType.LIST_ITEM]) + b"\x00\x00")

    def test_section_inside_list(self):
        """Only items and the end marker are valid inside a list."""
        data = bytes([ElementType.LIST_START, 1]) + b"l" + bytes([ElementType.SECTION_START, 1]) + b"s"
        with pytest.raises(ProtocolError):
            Message.decode(data)

    def test_duplicate_keys_last_wins(self):
        """Repeated keys on the wire keep the last value at the first position."""
        element = bytes([ElementType.KEY_VALUE, 1]) + b"a"
        data = element + b"\x00\x011" + bytes([ElementType.KEY_VALUE, 1]) + b"b\x00\x01x" + element + b"\x00\x012"
        decoded = Message.decode(data)
        assert decoded.items() == [("a", "2"), ("b", "x")]


class TestConversions:
    """to_dict and check_success."""

    def test_to_dict(self, conn_message: Message):
        """to_dict produces plain nested structures."""
        assert conn_message.to_dict() == {
            "version": "2",
            "local_addrs": ["192.0.2.1", "192.0.2.2"],
            "children": {"net": {"mode": "tunnel", "esp_proposals": ["aes256gcm16", "default"]}},
            "mobike": "yes",
        }

    def test_check_success_passes(self):
        """Responses without success=no pass."""
        Message({"success": "yes"}).check_success()
        Message().check_success()

    def test_check_success_fails(self):
        """success=no raises with the daemon's errmsg."""
        with pytest.raises(CommandFailedError, match="no such connection"):
            Message({"success": "no", "errmsg": "no such connection"}).check_success()
