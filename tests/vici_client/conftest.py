"""Shared fixtures: an in-process mock daemon speaking VICI over socketpairs."""

import socket
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from vici_client.config import Config
from vici_client.errors import ViciError
from vici_client.protocol.message import Message
from vici_client.protocol.packet import Packet, PacketType
from vici_client.protocol.transport import Transport
from vici_client.session import Session

KNOWN_EVENTS = frozenset({"test-event", "log", "list-sa"})
GREETING = Message({"test": "hello world!"})


class DaemonConnection(threading.Thread):
    """Serves one client connection."""

    def __init__(self, server: "MockDaemon", sock: socket.socket) -> None:
        super().__init__(name="mock-daemon", daemon=True)
        self.server = server
        self.sock = sock
        self.transport = Transport(sock)
        self.registered: set[str] = set()
        self._write_lock = threading.Lock()

    def send(self, packet: Packet) -> None:
        with self._write_lock:
            self.transport.send(packet)

    def send_raw(self, data: bytes) -> None:
        with self._write_lock:
            self.sock.sendall(data)

    def run(self) -> None:
        while True:
            try:
                packet = self.transport.recv()
                self.server.record(packet)
                self.handle(packet)
            except ViciError:
                return

    def handle(self, packet: Packet) -> None:
        match packet.type:
            case PacketType.EVENT_REGISTER:
                if packet.name not in KNOWN_EVENTS:
                    self.send(Packet(PacketType.EVENT_UNKNOWN))
                    return
                self.registered.add(packet.name)
                self.send(Packet(PacketType.EVENT_CONFIRM))
                if packet.name == "test-event" and self.server.greeting is not None:
                    self.send(Packet(PacketType.EVENT, "test-event", self.server.greeting))
            case PacketType.EVENT_UNREGISTER:
                if self.server.ignore_unregister:
                    return
                if packet.name in self.registered:
                    self.registered.discard(packet.name)
                    self.send(Packet(PacketType.EVENT_CONFIRM))
                else:
                    self.send(Packet(PacketType.EVENT_UNKNOWN))
            case PacketType.CMD_REQUEST:
                self.command(packet.name, packet.message or Message())

    def command(self, name: str, request: Message) -> None:
        match name:
            case "version":
                response = Message({"daemon": "charon", "version": "5.9.14"})
            case "echo":
                response = request
            case "fail":
                response = Message({"success": "no", "errmsg": "no such connection"})
            case "list-sas":
                for index in range(3):
                    if "list-sa" in self.registered:
                        self.send(Packet(PacketType.EVENT, "list-sa", Message({f"ike-{index}": {"state": "ESTABLISHED"}})))
                response = Message()
            case _:
                self.send(Packet(PacketType.CMD_UNKNOWN))
                return
        self.send(Packet(PacketType.CMD_RESPONSE, message=response))


class MockDaemon:
    """Accepts connections via ``connect`` and serves each on its own thread."""

    def __init__(self) -> None:
        self.greeting: Message | None = GREETING
        self.ignore_unregister = False
        self.received: list[Packet] = []
        self._cond = threading.Condition()
        self._conns: list[DaemonConnection] = []

    def connect(self) -> socket.socket:
        """Open a new client connection (usable as a session dialer)."""
        client, server = socket.socketpair()
        self.adopt(server)
        return client

    def adopt(self, sock: socket.socket) -> None:
        """Serve an already accepted connection."""
        conn = DaemonConnection(self, sock)
        with self._cond:
            self._conns.append(conn)
        conn.start()

    def record(self, packet: Packet) -> None:
        with self._cond:
            self.received.append(packet)
            self._cond.notify_all()

    def wait_for(self, predicate: Callable[[list[Packet]], bool], timeout: float = 5.0) -> bool:
        """Wait until ``predicate`` holds for the packets received so far."""
        with self._cond:
            return self._cond.wait_for(lambda: predicate(self.received), timeout)

    def received_of(self, ptype: PacketType) -> list[str]:
        """Names of received packets of one type."""
        with self._cond:
            return [p.name for p in self.received if p.type is ptype]

    def emit(self, name: str, message: Message) -> None:
        """Send an event to every connection registered for ``name``."""
        for conn in list(self._conns):
            if name in conn.registered:
                conn.send(Packet(PacketType.EVENT, name, message))

    def push(self, packet: Packet) -> None:
        """Send a packet to every connection, registered or not."""
        for conn in list(self._conns):
            conn.send(packet)

    def push_raw(self, data: bytes) -> None:
        """Send raw bytes to every connection."""
        for conn in list(self._conns):
            conn.send_raw(data)

    def disconnect(self) -> None:
        """Close the daemon side of every connection."""
        for conn in list(self._conns):
            conn.transport.close()

    def close(self) -> None:
        self.disconnect()
        for conn in list(self._conns):
            conn.join(timeout=5.0)


@pytest.fixture
def daemon() -> Iterator[MockDaemon]:
    """Running mock daemon, shut down after the test."""
    mock = MockDaemon()
    yield mock
    mock.close()


@pytest.fixture
def cfg() -> Config:
    """Config with short teardown waits."""
    return Config(unregister_timeout=1.0)


@pytest.fixture
def session(daemon: MockDaemon, cfg: Config) -> Iterator[Session]:
    """Session whose event listener dials its own connection."""
    s = Session(daemon.connect(), dialer=daemon.connect, cfg=cfg)
    yield s
    s.close()


@pytest.fixture
def shared_session(daemon: MockDaemon, cfg: Config) -> Iterator[Session]:
    """Session whose event listener shares the command connection."""
    s = Session(daemon.connect(), cfg=cfg)
    yield s
    s.close()


@pytest.fixture
def sock_path(tmp_path: Path, daemon: MockDaemon) -> Iterator[Path]:
    """Unix socket served by the mock daemon."""
    path = tmp_path / "charon.vici"
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(str(path))
    server.listen()
    server.settimeout(0.1)
    stop = threading.Event()

    def accept() -> None:
        while not stop.is_set():
            try:
                conn, _ = server.accept()
            except TimeoutError:
                continue
            conn.settimeout(None)
            daemon.adopt(conn)

    acceptor = threading.Thread(target=accept, daemon=True)
    acceptor.start()
    yield path
    stop.set()
    acceptor.join(timeout=5.0)
    server.close()
