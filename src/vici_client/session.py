"""Session: synchronous command exchange and event subscription over a VICI connection."""

import functools
import logging
import socket
import threading
from collections.abc import Callable, Iterator
from types import TracebackType
from typing import Self

from vici_client.config import Config
from vici_client.context import Context
from vici_client.dial import dial
from vici_client.errors import (
    CancelledError,
    ListenerClosedError,
    ProtocolError,
    SessionError,
    UnknownCommandError,
    UnknownEventError,
)
from vici_client.listener import Event, EventListener
from vici_client.protocol.message import Message
from vici_client.protocol.packet import Packet, PacketType
from vici_client.protocol.transport import Transport

logger = logging.getLogger(__name__)


class Session:
    """Client session with the daemon.

    Commands run one at a time in the caller's thread. At most one event listener is
    active per session. With a ``dialer`` the listener gets its own connection;
    without one it shares the command connection and its pump demultiplexes command
    responses from events.
    """

    def __init__(
        self, conn: socket.socket, *, dialer: Callable[[], socket.socket] | None = None, cfg: Config | None = None
    ) -> None:
        """Initialize a session over an already connected socket.

        Args:
            conn: Connected stream socket for command traffic. The session takes ownership.
            dialer: Opens additional connections to the same daemon, used for event listeners.
            cfg: Listener settings; defaults apply when omitted.

        """
        self._cfg = cfg or Config()
        self._transport = Transport(conn)
        self._dialer = dialer
        self._command_lock = threading.Lock()  # one outstanding command
        self._write_lock = threading.Lock()  # every send on the command connection
        self._listener_lock = threading.Lock()  # guards _listener and _closed
        self._listener: EventListener | None = None
        self._closed = False

    @classmethod
    def connect(cls, cfg: Config | None = None) -> Self:
        """Connect to the daemon socket from ``cfg``.

        Raises:
            TransportError: The socket is not connectable.

        """
        cfg = cfg or Config()
        dialer = functools.partial(dial, cfg.socket_path, timeout=cfg.connect_timeout)
        return cls(dialer(), dialer=dialer, cfg=cfg)

    @property
    def closed(self) -> bool:
        """Whether ``close`` has been called."""
        return self._closed

    @property
    def listener(self) -> EventListener | None:
        """The most recent event listener, active or not."""
        return self._listener

    # --- Commands ---

    def command(self, name: str, message: Message | None = None) -> Message:
        """Send a command and wait for its response.

        Raises:
            SessionError: The session or its connection is closed.
            UnknownCommandError: The daemon does not know the command.
            TransportError: Connection failure; the session is unusable afterwards.
            ProtocolError: Unexpected or malformed reply.

        """
        with self._command_lock:
            self._ensure_open()
            listener = self._listener
            routed = listener is not None and listener.routes_responses
            self._send(Packet(PacketType.CMD_REQUEST, name, message or Message()))
            if routed:
                response = listener.next_response()  # type: ignore[union-attr]
            else:
                response = self._recv_response(name)
        if response.type is PacketType.CMD_UNKNOWN:
            raise UnknownCommandError(name)
        logger.debug("Command %s completed", name)
        return response.message or Message()

    def streamed_command(self, name: str, event: str, message: Message | None = None) -> list[Message]:
        """Run a command that streams its results as ``event`` events before responding.

        Returns:
            Messages of the streamed events, in arrival order. The final response is checked
            with ``Message.check_success``.

        Raises:
            SessionError: The session or its connection is closed, or a listener shares the command connection.
            UnknownEventError: The daemon does not know ``event``.
            UnknownCommandError: The daemon does not know the command.
            CommandFailedError: The command response reports failure.
            TransportError: Connection failure.
            ProtocolError: Unexpected or malformed reply.

        """
        with self._command_lock:
            self._ensure_open()
            listener = self._listener
            if listener is not None and listener.routes_responses:
                raise SessionError("Command connection is in use by an event listener")

            self._send(Packet(PacketType.EVENT_REGISTER, event))
            if self._recv_event_ack().type is PacketType.EVENT_UNKNOWN:
                raise UnknownEventError(event)
            try:
                self._send(Packet(PacketType.CMD_REQUEST, name, message or Message()))
                events: list[Message] = []
                while True:
                    packet = self._transport.recv()
                    if packet.type is PacketType.EVENT and packet.name == event:
                        events.append(packet.message or Message())
                    elif packet.type is PacketType.CMD_RESPONSE:
                        response = packet.message or Message()
                        break
                    elif packet.type is PacketType.CMD_UNKNOWN:
                        raise UnknownCommandError(name)
                    else:
                        msg = f"Unexpected {packet.type.name} packet during streamed command {name}"
                        raise ProtocolError(msg)
            finally:
                self._send(Packet(PacketType.EVENT_UNREGISTER, event))
                self._recv_event_ack()
        response.check_success()
        return events

    def _recv_response(self, name: str) -> Packet:
        packet = self._transport.recv()
        if packet.type not in (PacketType.CMD_RESPONSE, PacketType.CMD_UNKNOWN):
            msg = f"Unexpected {packet.type.name} packet while awaiting response to {name}"
            raise ProtocolError(msg)
        return packet

    def _recv_event_ack(self) -> Packet:
        packet = self._transport.recv()
        if packet.type not in (PacketType.EVENT_CONFIRM, PacketType.EVENT_UNKNOWN):
            msg = f"Unexpected {packet.type.name} packet while awaiting event confirmation"
            raise ProtocolError(msg)
        return packet

    # --- Events ---

    def listen(self, *events: str, ctx: Context | None = None) -> None:
        """Register for ``events`` and start streaming them to ``next_event``.

        Args:
            events: Event names to register.
            ctx: Cancelling it stops the listener; the command path is unaffected.

        Raises:
            SessionError: The session is closed or a listener is already active.
            UnknownEventError: The daemon does not know one of the events; nothing stays registered.
            TransportError: Connection failure during registration.
            ProtocolError: Unexpected reply during registration.

        """
        with self._listener_lock:
            self._ensure_open()
            if self._listener is not None and self._listener.active:
                raise SessionError("An event listener is already active")
            listener = self._create_listener()
            self._listener = listener
        listener.listen(events, ctx)

    def _create_listener(self) -> EventListener:
        options = {
            "buffer_size": self._cfg.event_buffer_size,
            "drain_on_close": self._cfg.drain_events_on_close,
            "unregister_timeout": self._cfg.unregister_timeout,
        }
        if self._dialer is None:
            return EventListener(self._transport, write_lock=self._write_lock, command_lock=self._command_lock, **options)
        return EventListener(Transport(self._dialer()), **options)

    def next_event(self, timeout: float | None = None) -> Message:
        """Block until the next event and return its message.

        Raises:
            TimeoutError: No event within ``timeout`` seconds.
            ListenerClosedError: No listener was started, it was stopped, or the session was closed.
            CancelledError: The listener's context was cancelled.
            TransportError: The event connection failed.
            ProtocolError: The daemon sent a malformed or unexpected packet.

        """
        return self._require_listener().next_event(timeout).message

    def events(self) -> Iterator[Event]:
        """Iterate over events until the listener is stopped or cancelled.

        Connection and protocol failures are raised from the iterator.
        """
        listener = self._require_listener()
        while True:
            try:
                yield listener.next_event()
            except (ListenerClosedError, CancelledError):
                return

    def stop_listening(self) -> None:
        """Unregister all events and stop the listener. No-op without an active listener."""
        listener = self._listener
        if listener is not None:
            listener.close(ListenerClosedError("Event listener stopped"))

    def _require_listener(self) -> EventListener:
        listener = self._listener
        if listener is None:
            raise ListenerClosedError("No event listener was started")
        return listener

    # --- Lifecycle ---

    def close(self) -> None:
        """Stop any listener, waiting for its pump to exit, and close the connection. Idempotent."""
        with self._listener_lock:
            if self._closed:
                return
            self._closed = True
            listener = self._listener
        if listener is not None:
            listener.close(ListenerClosedError("Session closed"), unregister=not listener.shared)
        self._transport.close()
        logger.debug("Session closed")

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        self.close()

    # --- Helpers ---

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionError("Session is closed")
        if self._transport.closed:
            # force-closed by a shared listener whose unregistration went unconfirmed
            raise SessionError("Session connection was closed by event listener teardown")

    def _send(self, packet: Packet) -> None:
        with self._write_lock:
            self._transport.send(packet)
