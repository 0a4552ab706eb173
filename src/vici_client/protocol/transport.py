"""Length-prefixed framing of packets over a connected stream socket.

Frame: u32 big-endian payload length, then the encoded packet.

A Transport performs no locking around send/recv: at most one writer and one
reader may use it at a time, and its owners serialize their own access. Closing
is thread-safe and unblocks a concurrent ``recv``.
"""

import contextlib
import logging
import socket
import struct
import threading

from vici_client.errors import ProtocolError, TransportError
from vici_client.protocol.packet import Packet, decode_packet, encode_packet

logger = logging.getLogger(__name__)

# Upper bound on a single frame, matching the daemon's own limit
MAX_FRAME_SIZE = 512 * 1024

_HEADER = struct.Struct(">I")

# Read buffer size
_BUFSIZE = 65536


class Transport:
    """Sends and receives framed packets over one connection."""

    def __init__(self, sock: socket.socket) -> None:
        """Wrap a connected stream socket.

        Args:
            sock: Connected, blocking, full-duplex stream socket. The transport takes ownership.

        """
        self._sock = sock
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether ``close`` has been called."""
        return self._closed

    def send(self, packet: Packet) -> None:
        """Frame and write a packet in a single write.

        Raises:
            ProtocolError: Encoded packet exceeds the frame size limit.
            TransportError: Write failed; the connection must be considered unusable.

        """
        data = encode_packet(packet)
        if len(data) > MAX_FRAME_SIZE:
            msg = f"{packet.type.name} packet of {len(data)} bytes exceeds the {MAX_FRAME_SIZE} byte frame limit"
            raise ProtocolError(msg)
        try:
            self._sock.sendall(_HEADER.pack(len(data)) + data)
        except OSError as e:
            msg = f"Failed to send {packet.type.name} packet: {e}"
            raise TransportError(msg) from e
        logger.debug("Sent %s %s", packet.type.name, packet.name)

    def recv(self) -> Packet:
        """Block until one full frame arrives and decode it.

        Raises:
            TransportError: Read failed, the peer closed the connection, or the transport was closed.
            ProtocolError: Oversized frame or malformed packet.

        """
        (size,) = _HEADER.unpack(self._read_exact(_HEADER.size))
        if size > MAX_FRAME_SIZE:
            msg = f"Frame of {size} bytes exceeds the {MAX_FRAME_SIZE} byte limit"
            raise ProtocolError(msg)
        packet = decode_packet(self._read_exact(size))
        logger.debug("Received %s %s", packet.type.name, packet.name)
        return packet

    def close(self) -> None:
        """Close the connection. Idempotent.

        Raises:
            TransportError: The socket could not be closed.

        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        # shutdown() wakes a recv() blocked in another thread; close() alone does not
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        try:
            self._sock.close()
        except OSError as e:
            msg = f"Failed to close connection: {e}"
            raise TransportError(msg) from e

    def _read_exact(self, size: int) -> bytes:
        chunks: list[bytes] = []
        remaining = size
        while remaining:
            try:
                chunk = self._sock.recv(min(remaining, _BUFSIZE))
            except OSError as e:
                msg = f"Failed to read from connection: {e}"
                raise TransportError(msg) from e
            if not chunk:
                raise TransportError("Connection closed")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)
