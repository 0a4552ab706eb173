"""Event listener: register/stream/unregister state machine with a background pump thread.

The pump is the only reader of the listener's transport while streaming. It delivers
EVENT packets to the delivery channel, hands EVENT_CONFIRM/EVENT_UNKNOWN replies to the
unregistration in progress and, when the transport is shared with the command path,
routes CMD_RESPONSE/CMD_UNKNOWN packets to the waiting command.

Teardown (cancellation, explicit stop, session close) closes the channel first so that
consumers and a pump blocked on a full channel are released, then unregisters, then
stops the pump: by closing an owned transport, or, on a shared transport, by letting
the pump exit after the last unregister confirmation.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from vici_client.channel import EventChannel
from vici_client.context import Context
from vici_client.errors import (
    CancelledError,
    ListenerClosedError,
    ProtocolError,
    SessionError,
    TransportError,
    UnknownEventError,
    ViciError,
)
from vici_client.protocol.message import Message
from vici_client.protocol.packet import Packet, PacketType
from vici_client.protocol.transport import Transport

logger = logging.getLogger(__name__)

PUMP_THREAD_NAME = "vici-event-pump"

_ACKS = frozenset({PacketType.EVENT_CONFIRM, PacketType.EVENT_UNKNOWN})
_RESPONSES = frozenset({PacketType.CMD_RESPONSE, PacketType.CMD_UNKNOWN})


class ListenerState(StrEnum):
    """Lifecycle of an event listener."""

    IDLE = "idle"
    REGISTERING = "registering"
    STREAMING = "streaming"
    UNREGISTERING = "unregistering"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class Event:
    """An event delivered by the daemon."""

    name: str
    message: Message


class EventListener:
    """Streams named daemon events to consumers of ``next_event``."""

    def __init__(
        self,
        transport: Transport,
        *,
        buffer_size: int = 16,
        drain_on_close: bool = False,
        unregister_timeout: float = 2.0,
        write_lock: threading.Lock | None = None,
        command_lock: threading.Lock | None = None,
    ) -> None:
        """Initialize an idle listener.

        Args:
            transport: Transport to register and stream on.
            buffer_size: Delivery channel capacity.
            drain_on_close: Keep buffered events readable after teardown instead of discarding them.
            unregister_timeout: Upper bound on waiting for unregister confirmations during teardown.
            write_lock: Lock serializing writes on ``transport``; required when it is shared.
            command_lock: The session's command lock. Passing it marks the transport as shared
                with the command path.

        """
        self._transport = transport
        self._write_lock = write_lock or threading.Lock()
        self._command_lock = command_lock
        self._drain_on_close = drain_on_close
        self._unregister_timeout = unregister_timeout

        self._lock = threading.Lock()  # guards _state, _events, _pending_acks
        self._state = ListenerState.IDLE
        self._events: list[str] = []
        self._pending_acks = 0

        self._channel: EventChannel[Event] = EventChannel(buffer_size)
        self._acks: queue.Queue[Packet | None] = queue.Queue()
        self._responses: queue.Queue[Packet | ViciError] = queue.Queue()
        self._pump: threading.Thread | None = None
        self._ctx: Context | None = None
        # Set once no pump runs and the owned transport is released
        self._finished = threading.Event()

    # --- State ---

    @property
    def state(self) -> ListenerState:
        """Current lifecycle state."""
        return self._state

    @property
    def active(self) -> bool:
        """Whether the listener is registering or streaming."""
        return self._state in (ListenerState.REGISTERING, ListenerState.STREAMING)

    @property
    def shared(self) -> bool:
        """Whether the transport is shared with the session's command path."""
        return self._command_lock is not None

    @property
    def events(self) -> tuple[str, ...]:
        """Currently registered event names."""
        with self._lock:
            return tuple(self._events)

    @property
    def routes_responses(self) -> bool:
        """Whether command responses must be taken from ``next_response`` instead of the transport."""
        return self.shared and self._pump is not None and self._pump.is_alive()

    # --- Registration ---

    def listen(self, events: Sequence[str], ctx: Context | None = None) -> None:
        """Register ``events`` and start streaming.

        On an unknown event, already registered names from this call are unregistered
        before the error is raised. Cancelling ``ctx`` later tears the listener down.

        Raises:
            ValueError: No event names given.
            SessionError: The listener was already used.
            UnknownEventError: The daemon does not know one of the events.
            CancelledError: ``ctx`` was cancelled before streaming started.
            TransportError: Connection failure during registration.
            ProtocolError: Unexpected reply during registration.

        """
        if not events:
            raise ValueError("At least one event name is required")
        with self._lock:
            if self._state is not ListenerState.IDLE:
                msg = f"Event listener is {self._state}, cannot listen again"
                raise SessionError(msg)
            self._state = ListenerState.REGISTERING

        try:
            if ctx is not None and ctx.cancelled:
                raise CancelledError("Context cancelled before listening")
            # the pump must own reads before another command can take the lock
            with self._command_lock or contextlib.nullcontext():
                self._register(events)
                started = self._start_pump()
        except BaseException as e:
            self._abort_registration(e)
            raise
        if not started:
            raise ListenerClosedError("Event listener closed during registration")
        logger.debug("Listening for events: %s", ", ".join(events))

        if ctx is not None:
            self._ctx = ctx
            ctx.add_callback(self._on_cancel)

    def _start_pump(self) -> bool:
        """Switch to STREAMING and start the pump. Return False if closed during registration."""
        with self._lock:
            if self._state is not ListenerState.REGISTERING:
                return False
            self._state = ListenerState.STREAMING
            self._pump = threading.Thread(target=self._run, name=PUMP_THREAD_NAME, daemon=True)
            self._pump.start()
        return True

    def _register(self, events: Sequence[str]) -> None:
        registered: list[str] = []
        try:
            for name in events:
                self._send(Packet(PacketType.EVENT_REGISTER, name))
                if self._await_ack_directly().type is PacketType.EVENT_UNKNOWN:
                    raise UnknownEventError(name)
                registered.append(name)
                with self._lock:
                    self._events.append(name)
        except UnknownEventError:
            self._rollback(registered)
            raise

    def _rollback(self, names: list[str]) -> None:
        """Unregister names registered by a failed ``listen`` call (pump not running)."""
        for name in reversed(names):
            try:
                self._send(Packet(PacketType.EVENT_UNREGISTER, name))
                self._await_ack_directly()
            except ViciError as e:
                logger.warning("Failed to roll back registration of %s: %s", name, e)
                break
        with self._lock:
            self._events.clear()

    def _await_ack_directly(self) -> Packet:
        """Read until an event confirmation arrives; only used while the pump is not running."""
        while True:
            packet = self._transport.recv()
            if packet.type in _ACKS:
                return packet
            if packet.type is PacketType.EVENT:
                # registered a moment ago, nobody consumes yet
                self._channel.put(Event(packet.name, packet.message or Message()), force=True)
                continue
            msg = f"Unexpected {packet.type.name} packet while awaiting event confirmation"
            raise ProtocolError(msg)

    def _abort_registration(self, error: BaseException) -> None:
        failed = isinstance(error, TransportError | ProtocolError)
        with self._lock:
            if self._state is ListenerState.REGISTERING:
                self._state = ListenerState.FAILED if failed else ListenerState.CLOSED
            self._events.clear()
        self._channel.close(ListenerClosedError("Event registration failed"))
        if not self.shared:
            self._close_transport()
        self._finished.set()

    # --- Consumers ---

    def next_event(self, timeout: float | None = None) -> Event:
        """Block until the next event.

        Raises:
            TimeoutError: No event within ``timeout`` seconds.
            ListenerClosedError: The listener was stopped or its session closed.
            CancelledError: The listener's context was cancelled.
            TransportError: The connection failed while streaming.
            ProtocolError: The daemon sent a malformed or unexpected packet.

        """
        try:
            return self._channel.get(timeout)
        except ViciError:
            # terminal: do not report before the pump is gone
            self._finished.wait()
            raise

    def next_response(self) -> Packet:
        """Block until the pump routes a command response (shared transport only).

        Raises:
            ViciError: The pump stopped before a response arrived.

        """
        item = self._responses.get()
        if isinstance(item, ViciError):
            raise item
        return item

    def join(self, timeout: float | None = None) -> bool:
        """Wait until no pump runs and resources are released. Return False on timeout."""
        return self._finished.wait(timeout)

    # --- Teardown ---

    def close(self, error: ViciError | None = None, *, unregister: bool = True) -> None:
        """Tear the listener down. Idempotent; concurrent callers wait for the first one.

        On a shared transport the pump exits after the last unregister confirmation. If the
        confirmations do not arrive within ``unregister_timeout``, the shared transport is closed
        to stop the pump, and the session raises SessionError for later commands.

        Args:
            error: Terminal error reported by ``next_event``; ListenerClosedError by default.
            unregister: Send best-effort unregistrations. Without it a shared transport is closed
                too, which is how the session stops the pump when it closes.

        """
        with self._lock:
            state = self._state
            if state in (ListenerState.UNREGISTERING, ListenerState.CLOSED):
                already_closing = True
            else:
                already_closing = False
                self._state = ListenerState.UNREGISTERING
                names = list(self._events)
                self._events.clear()
                pump_alive = self._pump is not None and self._pump.is_alive()
                send_unregister = unregister and state is not ListenerState.FAILED
                self._pending_acks = len(names) if send_unregister and pump_alive else 0
        if already_closing:
            self._finished.wait()
            return
        if state is ListenerState.IDLE:
            self._channel.close(error or ListenerClosedError("Event listener was never started"))
            self._finish()
            return

        if self._ctx is not None:
            self._ctx.remove_callback(self._on_cancel)
        self._channel.close(error or ListenerClosedError("Event listener closed"), discard=not self._drain_on_close)

        lock = self._command_lock if self.shared and send_unregister else None
        with lock or contextlib.nullcontext():
            if send_unregister and names:
                self._unregister(names, await_acks=pump_alive)
            if not self.shared or not unregister:
                self._close_transport()
            self._stop_pump()
        self._finish()
        logger.debug("Event listener closed")

    def _on_cancel(self) -> None:
        self.close(CancelledError("Event listener context cancelled"))

    def _unregister(self, names: list[str], *, await_acks: bool) -> None:
        """Best-effort unregistration; failures are logged."""
        deadline = time.monotonic() + self._unregister_timeout
        for name in names:
            try:
                self._send(Packet(PacketType.EVENT_UNREGISTER, name))
            except ViciError as e:
                logger.info("Failed to unregister event %s: %s", name, e)
                return
        if not await_acks:
            return
        for _ in names:
            try:
                ack = self._acks.get(timeout=max(deadline - time.monotonic(), 0))
            except queue.Empty:
                logger.warning("Timed out waiting for unregister confirmations")
                return
            if ack is None:
                return
            if ack.type is PacketType.EVENT_UNKNOWN:
                logger.info("Daemon rejected an event unregistration")

    def _stop_pump(self) -> None:
        pump = self._pump
        if pump is None or pump is threading.current_thread():
            return
        pump.join(self._unregister_timeout)
        if pump.is_alive():
            logger.warning("Event pump still running after unregistering, closing the connection")
            self._close_transport()
            pump.join()

    def _finish(self) -> None:
        with self._lock:
            self._state = ListenerState.CLOSED
        self._finished.set()

    # --- Pump ---

    def _run(self) -> None:
        error: ViciError | None = None
        try:
            while True:
                packet = self._transport.recv()
                if packet.type is PacketType.EVENT:
                    if not self._channel.put(Event(packet.name, packet.message or Message())):
                        logger.debug("Dropping %s event, listener is closing", packet.name)
                elif packet.type in _ACKS:
                    if self._on_ack(packet):
                        return
                elif packet.type in _RESPONSES and self.shared:
                    self._responses.put(packet)
                else:
                    msg = f"Unexpected {packet.type.name} packet on the event stream"
                    raise ProtocolError(msg)
        except ViciError as e:
            error = e
        finally:
            self._on_pump_exit(error)

    def _on_ack(self, packet: Packet) -> bool:
        """Hand an unregister confirmation to teardown. Return True when the pump should stop."""
        with self._lock:
            if self._state is not ListenerState.UNREGISTERING:
                logger.warning("Ignoring unsolicited %s packet", packet.type.name)
                return False
            self._pending_acks -= 1
            done = self.shared and self._pending_acks <= 0
        self._acks.put(packet)
        return done

    def _on_pump_exit(self, error: ViciError | None) -> None:
        self._acks.put(None)
        if self.shared:
            self._responses.put(error or TransportError("Event listener stopped reading"))
        if error is None:
            return
        with self._lock:
            expected = self._state in (ListenerState.UNREGISTERING, ListenerState.CLOSED)
            if not expected:
                self._state = ListenerState.FAILED
        if expected:
            logger.debug("Event pump stopped: %s", error)
            return
        logger.warning("Event listener failed: %s", error)
        if self._ctx is not None:
            self._ctx.remove_callback(self._on_cancel)
        self._channel.close(error, discard=not self._drain_on_close)
        if not self.shared:
            self._close_transport()
        self._finished.set()

    # --- Helpers ---

    def _send(self, packet: Packet) -> None:
        with self._write_lock:
            self._transport.send(packet)

    def _close_transport(self) -> None:
        try:
            self._transport.close()
        except TransportError as e:
            logger.info("Failed to close event connection: %s", e)
