"""Building request messages from ``key=value`` command-line arguments.

Dotted keys create nested sections (``child.mode=tunnel``); repeating a key turns
its value into a list (``pools=a pools=b``).
"""

from vici_client.protocol.message import Message


def parse_params(params: list[str]) -> Message:
    """Build a Message from ``key=value`` strings.

    Raises:
        ValueError: An argument lacks ``=``, has an empty key part, or a key is used both as
            a section and as a value.

    """
    message = Message()
    for param in params:
        key, sep, value = param.partition("=")
        if not sep or not key:
            msg = f"Expected key=value, got {param!r}"
            raise ValueError(msg)
        *path, leaf = key.split(".")
        if not leaf or not all(path):
            msg = f"Empty key part in {key!r}"
            raise ValueError(msg)
        target = message
        for part in path:
            section = target.get(part)
            if section is None:
                section = Message()
                target.set(part, section)
            if not isinstance(section, Message):
                msg = f"Key {part!r} is a value, not a section"
                raise ValueError(msg)
            target = section
        existing = target.get(leaf)
        if existing is None:
            target.set(leaf, value)
        elif isinstance(existing, Message):
            msg = f"Key {leaf!r} is a section, not a value"
            raise ValueError(msg)
        elif isinstance(existing, list):
            target.set(leaf, [*existing, value])
        else:
            target.set(leaf, [existing, value])
    return message
