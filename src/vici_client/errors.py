"""Error taxonomy for the VICI client.

Every error carries a machine-readable ``code`` that the CLI reports in JSON mode.
"""


class ViciError(Exception):
    """Base class for all client errors."""

    code = "vici_error"


class TransportError(ViciError):
    """Connection read, write, or close failure. The affected connection is unusable afterwards."""

    code = "transport"


class ProtocolError(ViciError):
    """Malformed frame, packet, or message, or a packet that is not valid in the current state."""

    code = "protocol"


class UnknownCommandError(ViciError):
    """The daemon does not know the requested command."""

    code = "unknown_command"

    def __init__(self, command: str) -> None:
        """Initialize with the rejected command name.

        Args:
            command: Command name the daemon answered with CMD_UNKNOWN.

        """
        super().__init__(f"Unknown command: {command}")
        self.command = command


class UnknownEventError(ViciError):
    """The daemon does not know the requested event."""

    code = "unknown_event"

    def __init__(self, event: str) -> None:
        """Initialize with the rejected event name.

        Args:
            event: Event name the daemon answered with EVENT_UNKNOWN.

        """
        super().__init__(f"Unknown event: {event}")
        self.event = event


class CommandFailedError(ViciError):
    """The daemon executed the command but reported ``success = no``."""

    code = "command_failed"


class TypeMismatchError(ViciError, TypeError):
    """A message value was accessed or set as the wrong shape (scalar, section, or list)."""

    code = "type_mismatch"


class ListenerClosedError(ViciError):
    """The event listener is closed: stopped explicitly, by session close, or never started."""

    code = "listener_closed"


class CancelledError(ViciError):
    """The context governing the event listener was cancelled."""

    code = "cancelled"


class SessionError(ViciError):
    """Session misuse: the session is closed or the requested operation conflicts with its state."""

    code = "session"
