"""Wire protocol: message codec, packets, and framed transport."""

from vici_client.protocol.message import Message as Message
from vici_client.protocol.packet import Packet as Packet
from vici_client.protocol.packet import PacketType as PacketType
from vici_client.protocol.transport import Transport as Transport
