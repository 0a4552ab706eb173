"""Opening connections to the daemon socket."""

import socket
from pathlib import Path

from vici_client.errors import TransportError


def dial(sock_path: Path | str, *, timeout: float = 5.0) -> socket.socket:
    """Connect to the daemon's Unix socket.

    The timeout applies to connecting only; the returned socket is blocking.

    Raises:
        TransportError: The socket does not exist, refuses connections, or the timeout elapsed.

    """
    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    s.settimeout(timeout)
    try:
        s.connect(str(sock_path))
    except OSError as e:
        s.close()
        msg = f"Cannot connect to {sock_path}: {e}"
        raise TransportError(msg) from e
    s.settimeout(None)
    return s


def is_connectable(sock_path: Path | str) -> bool:
    """Check if the daemon socket is accepting connections."""
    try:
        dial(sock_path, timeout=1.0).close()
    except TransportError:
        return False
    else:
        return True
