"""VICI message: an ordered document of key-values, sections, and lists, plus its binary codec.

Each element starts with a one-byte type:

SECTION_START  u8 name length, name          opens a nested section
SECTION_END                                  closes the innermost section
KEY_VALUE      u8 name length, name, u16 value length, value
LIST_START     u8 name length, name          opens a list
LIST_ITEM      u16 value length, value       only valid inside a list
LIST_END                                     closes the list

Values are raw bytes on the wire. They are exposed as ``str`` decoded with
``surrogateescape`` so that binary values survive a decode/encode cycle.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator, Mapping
from enum import IntEnum
from typing import Any, Self, TypeAlias

from vici_client.errors import CommandFailedError, ProtocolError, TypeMismatchError

MAX_NAME_LENGTH = 0xFF
MAX_VALUE_LENGTH = 0xFFFF

_U16 = struct.Struct(">H")

Value: TypeAlias = "str | Message | list[str]"


class ElementType(IntEnum):
    """Message element type tags."""

    SECTION_START = 1
    SECTION_END = 2
    KEY_VALUE = 3
    LIST_START = 4
    LIST_ITEM = 5
    LIST_END = 6


def _encode_text(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def _check_key(key: object) -> str:
    if not isinstance(key, str):
        msg = f"Message keys must be str, not {type(key).__name__}"
        raise TypeMismatchError(msg)
    size = len(_encode_text(key))
    if not 0 < size <= MAX_NAME_LENGTH:
        msg = f"Message key must be 1..{MAX_NAME_LENGTH} bytes, got {size}: {key!r}"
        raise ValueError(msg)
    return key


def _to_scalar(value: object) -> str:
    """Normalize a scalar value to its wire string."""
    match value:
        case bool():
            text = "yes" if value else "no"
        case int():
            text = str(value)
        case str():
            text = value
        case bytes() | bytearray():
            text = _decode_text(bytes(value))
        case _:
            msg = f"Unsupported message value type: {type(value).__name__}"
            raise TypeMismatchError(msg)
    if len(_encode_text(text)) > MAX_VALUE_LENGTH:
        msg = f"Message value exceeds {MAX_VALUE_LENGTH} bytes"
        raise ValueError(msg)
    return text


def _to_value(value: object) -> Value:
    if isinstance(value, Message):
        return value
    if isinstance(value, Mapping):
        return Message(value)
    if isinstance(value, list | tuple):
        return [_to_scalar(item) for item in value]
    return _to_scalar(value)


class Message:
    """Ordered VICI document.

    Keys are unique per nesting level. Setting an existing key replaces its value
    and keeps its original position.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Mapping[str, Any] | None = None) -> None:
        """Initialize, optionally populating from a mapping.

        Args:
            items: Initial entries, normalized the same way as ``set``.

        """
        self._items: dict[str, Value] = {}
        if items:
            for key, value in items.items():
                self.set(key, value)

    # --- Builder ---

    def set(self, key: str, value: object) -> None:
        """Set ``key`` to a scalar, a section, or a list of scalars.

        Scalars may be ``str``, ``bytes``, ``int`` or ``bool`` (``yes``/``no``). Mappings become
        nested sections, lists and tuples become lists of strings.

        Raises:
            ValueError: Key or value is too long for the wire format.
            TypeMismatchError: Value has an unsupported type.

        """
        self._items[_check_key(key)] = _to_value(value)

    def delete(self, key: str) -> bool:
        """Remove ``key``. Return True if it was present."""
        return self._items.pop(key, None) is not None

    # --- Accessors ---

    def get(self, key: str, default: Value | None = None) -> Value | None:
        """Return the value for ``key`` in whatever shape it has, or ``default`` when absent."""
        return self._items.get(key, default)

    def get_str(self, key: str) -> str | None:
        """Return the scalar at ``key``, None when absent.

        Raises:
            TypeMismatchError: The key holds a section or a list.

        """
        value = self._items.get(key)
        if value is not None and not isinstance(value, str):
            msg = f"Key {key!r} holds a {_shape(value)}, not a value"
            raise TypeMismatchError(msg)
        return value

    def get_section(self, key: str) -> Message | None:
        """Return the section at ``key``, None when absent.

        Raises:
            TypeMismatchError: The key holds a value or a list.

        """
        value = self._items.get(key)
        if value is not None and not isinstance(value, Message):
            msg = f"Key {key!r} holds a {_shape(value)}, not a section"
            raise TypeMismatchError(msg)
        return value

    def get_list(self, key: str) -> list[str] | None:
        """Return the list at ``key``, None when absent.

        Raises:
            TypeMismatchError: The key holds a value or a section.

        """
        value = self._items.get(key)
        if value is not None and not isinstance(value, list):
            msg = f"Key {key!r} holds a {_shape(value)}, not a list"
            raise TypeMismatchError(msg)
        return value

    def keys(self) -> list[str]:
        """Return the top-level keys in insertion order."""
        return list(self._items)

    def items(self) -> list[tuple[str, Value]]:
        """Return the top-level (key, value) pairs in insertion order."""
        return list(self._items.items())

    def __getitem__(self, key: str) -> Value:
        return self._items[key]

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return list(self._items.items()) == list(other._items.items())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Message({self.to_dict()!r})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain nested dicts and lists (JSON-serializable)."""
        result: dict[str, Any] = {}
        for key, value in self._items.items():
            if isinstance(value, Message):
                result[key] = value.to_dict()
            elif isinstance(value, list):
                result[key] = list(value)
            else:
                result[key] = value
        return result

    def check_success(self) -> None:
        """Raise if this command response reports failure.

        Raises:
            CommandFailedError: ``success`` is ``no``; the error text comes from ``errmsg``.

        """
        if self._items.get("success") == "no":
            errmsg = self._items.get("errmsg")
            raise CommandFailedError(errmsg if isinstance(errmsg, str) and errmsg else "Command failed.")

    # --- Codec ---

    def encode(self) -> bytes:
        """Serialize to the VICI element stream."""
        buf = bytearray()
        _encode_into(buf, self)
        return bytes(buf)

    @classmethod
    def decode(cls, data: bytes) -> Self:
        """Parse a VICI element stream.

        Raises:
            ProtocolError: Truncated input, unknown element type, or unbalanced sections/lists.

        """
        reader = _Reader(data)
        root = cls()
        stack: list[Message] = [root]
        current_list: list[str] | None = None
        while not reader.at_end:
            kind = reader.byte()
            if current_list is not None:
                if kind == ElementType.LIST_ITEM:
                    current_list.append(reader.value())
                elif kind == ElementType.LIST_END:
                    current_list = None
                else:
                    msg = f"Unexpected element type {kind} inside a list"
                    raise ProtocolError(msg)
                continue
            match kind:
                case ElementType.SECTION_START:
                    section = Message()
                    stack[-1]._items[reader.name()] = section
                    stack.append(section)
                case ElementType.SECTION_END:
                    if len(stack) == 1:
                        raise ProtocolError("Section end without a matching section start")
                    stack.pop()
                case ElementType.KEY_VALUE:
                    name = reader.name()
                    stack[-1]._items[name] = reader.value()
                case ElementType.LIST_START:
                    current_list = []
                    stack[-1]._items[reader.name()] = current_list
                case ElementType.LIST_ITEM | ElementType.LIST_END:
                    raise ProtocolError("List element outside of a list")
                case _:
                    msg = f"Unknown message element type {kind}"
                    raise ProtocolError(msg)
        if current_list is not None or len(stack) > 1:
            raise ProtocolError("Truncated message: unterminated section or list")
        return root


def _shape(value: Value) -> str:
    if isinstance(value, Message):
        return "section"
    if isinstance(value, list):
        return "list"
    return "value"


def _encode_into(buf: bytearray, message: Message) -> None:
    for key, value in message.items():
        name = _encode_text(key)
        if isinstance(value, Message):
            buf += bytes((ElementType.SECTION_START, len(name))) + name
            _encode_into(buf, value)
            buf.append(ElementType.SECTION_END)
        elif isinstance(value, list):
            buf += bytes((ElementType.LIST_START, len(name))) + name
            for item in value:
                data = _encode_text(item)
                buf.append(ElementType.LIST_ITEM)
                buf += _U16.pack(len(data)) + data
            buf.append(ElementType.LIST_END)
        else:
            data = _encode_text(value)
            buf += bytes((ElementType.KEY_VALUE, len(name))) + name
            buf += _U16.pack(len(data)) + data


class _Reader:
    """Bounds-checked cursor over an encoded message."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            msg = f"Truncated message: need {size} bytes at offset {self._pos}, {len(self._data) - self._pos} left"
            raise ProtocolError(msg)
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def name(self) -> str:
        return _decode_text(self.take(self.byte()))

    def value(self) -> str:
        (size,) = _U16.unpack(self.take(_U16.size))
        return _decode_text(self.take(size))
