"""Client for the VICI control protocol: commands and event streams over one daemon socket."""

from vici_client.config import Config as Config
from vici_client.context import Context as Context
from vici_client.errors import CancelledError as CancelledError
from vici_client.errors import CommandFailedError as CommandFailedError
from vici_client.errors import ListenerClosedError as ListenerClosedError
from vici_client.errors import ProtocolError as ProtocolError
from vici_client.errors import SessionError as SessionError
from vici_client.errors import TransportError as TransportError
from vici_client.errors import TypeMismatchError as TypeMismatchError
from vici_client.errors import UnknownCommandError as UnknownCommandError
from vici_client.errors import UnknownEventError as UnknownEventError
from vici_client.errors import ViciError as ViciError
from vici_client.listener import Event as Event
from vici_client.protocol.message import Message as Message
from vici_client.session import Session as Session
