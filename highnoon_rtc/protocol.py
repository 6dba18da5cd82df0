"""Message protocol definitions for HighNoon-RTC.

This module defines the relay events, domain events, result values and the
message envelope shared by Host and Client sessions.

Message Protocol Overview
-------------------------

HighNoon-RTC uses two delivery paths:

1. **Fast path**: JSON text sent directly over the peer-to-peer data channel
   once the negotiation finished. Best effort, no delivery guarantee.
2. **Safe path**: envelopes routed through the relay. Guarantee is only as
   strong as the relay's.

Relay Frames
------------

Every frame on the relay websocket is a JSON object::

    {"event": "<name>", "data": <payload>}

Relay Events
------------

**create_room** (Host → relay)
    Asks the relay for a new room. Answered by **room_created** with the
    room id as payload.

**join_room** (Client → relay)
    Payload: ``{"roomId": ..., "userId": ...}``. Answered by **room_joined**
    (``{"roomId", "socketId", "connectedClients"}``) or **room_not_found**.

**client_joined** (relay → Host)
    Payload: ``{"userId", "socketId", "connectedClients"}``. Starts a
    negotiation on the Host.

**send_offer_to_client** (Host → relay → Client as **server_offer**)
    Payload: ``{"to": socketId, "offer": {sdp, type}, "candidates": [...]}``

**send_client_offer_response** (Client → relay → Host as **client_response**)
    Payload: ``{"answer": {sdp, type}, "candidates": [...], "userId",
    "roomId"}``. The relay adds ``"from"`` (the Client's socket id).

**get_connected_clients** (either → relay)
    Payload: ``{"roomId", "from"}``. Answered with **connected_clients**
    ``{"to", "payload": ClientListData}``.

**client_send_message** / **client_send_message_to** (Client → relay)
**server_send_message** / **server_send_message_to** (Host → relay)
    Payload: an envelope. Delivered to receivers as **message**.

**update_client_list** (Host → relay → all Clients)
    Payload: ``{"meta", "isJoin", "newClient"?, "removedClient"?,
    "clients": ClientListData}``

**get_turn_auth** / **turn_auth** (either ↔ relay)
    Extra ICE hints appended to the session's hint list.

**reconnect** / **disconnect** (transport → session)
    Raised locally when the relay connection came back with a new socket,
    or was lost after the last reconnection attempt.

Message Envelope
----------------

Relay messages are tagged envelopes::

    {"kind": "client_direct", "meta": {...}, "to": "server", "payload": ...}

``kind`` is one of ``host_broadcast``, ``host_direct``, ``client_broadcast``
or ``client_direct``. Host metadata is ``{roomId, initialized,
connectedToRoom}``; Client metadata is ``{userId, roomId, socketId}``.
Envelopes without ``kind`` are classified from the shape of ``meta``.

Candidates and descriptions use the browser JSON shapes::

    {"sdp": "...", "type": "offer"}
    {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar, Union

# =============================================================================
# Relay Events
# =============================================================================

# Room management
EVT_CREATE_ROOM = "create_room"
EVT_ROOM_CREATED = "room_created"
EVT_JOIN_ROOM = "join_room"
EVT_ROOM_JOINED = "room_joined"
EVT_ROOM_NOT_FOUND = "room_not_found"
EVT_CLIENT_JOINED = "client_joined"

# Handshake signaling
EVT_SEND_OFFER_TO_CLIENT = "send_offer_to_client"
EVT_SERVER_OFFER = "server_offer"
EVT_SEND_CLIENT_OFFER_RESPONSE = "send_client_offer_response"
EVT_CLIENT_RESPONSE = "client_response"

# Roster
EVT_GET_CONNECTED_CLIENTS = "get_connected_clients"
EVT_CONNECTED_CLIENTS = "connected_clients"
EVT_UPDATE_CLIENT_LIST = "update_client_list"

# Relay ("safe path") messages
EVT_CLIENT_SEND_MESSAGE = "client_send_message"
EVT_CLIENT_SEND_MESSAGE_TO = "client_send_message_to"
EVT_SERVER_SEND_MESSAGE = "server_send_message"
EVT_SERVER_SEND_MESSAGE_TO = "server_send_message_to"
EVT_MESSAGE = "message"

# Negotiation hints
EVT_GET_TURN_AUTH = "get_turn_auth"
EVT_TURN_AUTH = "turn_auth"

# Connection lifecycle (raised locally by the transport, never sent)
EVT_RECONNECT = "reconnect"
EVT_DISCONNECT = "disconnect"

# =============================================================================
# Domain Events (published on the session event bus)
# =============================================================================

# Host
ON_CLIENT_CONNECTED = "client_connected"
ON_CLIENT_DISCONNECTED = "client_disconnected"

# Client
ON_SERVER_CONNECTION_ESTABLISHED = "server_connection_established"
ON_RELAY_FROM_CLIENT = "relay_from_client"
ON_RELAY_FROM_SERVER = "relay_from_server"
ON_DISCONNECTED = "disconnected"

# Both
ON_PACKET = "packet"
ON_RELAY = "relay"
ON_CLIENT_LIST_UPDATED = "client_list_updated"
ON_RELAY_DISCONNECTED = "relay_disconnected"
ON_RELAY_RECONNECTED = "relay_reconnected"

# Address a Client uses to relay a message to the Host.
HOST_ADDRESS = "server"

# =============================================================================
# Error strings
# =============================================================================

ERR_TIMEOUT = "Connection Timed out"
ERR_CONNECTION = "Connection error"
ERR_CONNECT_TIMEOUT = "Connection timeout"
ERR_AUTHENTICATION = (
    "Authentication error: check that your project_id and api_token are correct"
)
ERR_NOT_INITIALIZED = "Client not initialized"
ERR_HOST_NOT_INITIALIZED = "Host not initialized"
ERR_NOT_CONNECTED = "Not connected to a room"
ERR_ROOM_NOT_FOUND = "Room not found"
ERR_CLIENT_NOT_FOUND = "Client not found"
ERR_ROOM_IN_PROGRESS = "Room creation already in progress"


# =============================================================================
# Result values
# =============================================================================

T = TypeVar("T")


@dataclass
class HNResponse(Generic[T]):
    """Result of a session operation: either ``data`` or ``error``.

    Attributes:
        data: Operation result, None on failure.
        error: Human readable error, None on success.
    """

    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "HNResponse[T]":
        return cls(data=data, error=None)

    @classmethod
    def failure(cls, error: str) -> "HNResponse[T]":
        return cls(data=None, error=error)

    @classmethod
    def from_exception(cls, exc: Exception) -> "HNResponse[T]":
        return cls(data=None, error=str(exc))


@dataclass
class Initialize:
    status: str = "connected"


@dataclass
class CreateRoomData:
    room: str


@dataclass
class RoomJoinData:
    room: str
    connected_clients: int


@dataclass
class Ack:
    success: bool = True


@dataclass(frozen=True)
class PeerInfo:
    """Identity of one room member."""

    user_id: str
    socket_id: Optional[str] = None

    def to_dict(self) -> dict:
        info = {"userId": self.user_id}
        if self.socket_id is not None:
            info["socketId"] = self.socket_id
        return info

    @classmethod
    def from_dict(cls, data: dict) -> "PeerInfo":
        return cls(user_id=data.get("userId", ""), socket_id=data.get("socketId"))


@dataclass
class ClientListData:
    """Roster snapshot: ordered room members plus their count."""

    clients: List[PeerInfo] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.clients)

    @property
    def user_ids(self) -> List[str]:
        return [client.user_id for client in self.clients]

    def to_dict(self) -> dict:
        return {
            "clients": [client.to_dict() for client in self.clients],
            "count": self.count,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ClientListData":
        if not data:
            return cls()
        return cls(clients=[PeerInfo.from_dict(c) for c in data.get("clients", [])])


# =============================================================================
# Metadata and envelopes
# =============================================================================


class EnvelopeKind(str, Enum):
    HOST_BROADCAST = "host_broadcast"
    HOST_DIRECT = "host_direct"
    CLIENT_BROADCAST = "client_broadcast"
    CLIENT_DIRECT = "client_direct"

    @property
    def from_host(self) -> bool:
        return self in (EnvelopeKind.HOST_BROADCAST, EnvelopeKind.HOST_DIRECT)


@dataclass
class HostMetadata:
    room_id: Optional[str]
    initialized: bool
    connected_to_room: bool

    def to_dict(self) -> dict:
        return {
            "roomId": self.room_id,
            "initialized": self.initialized,
            "connectedToRoom": self.connected_to_room,
        }


@dataclass
class ClientMetadata:
    user_id: str
    room_id: Optional[str]
    socket_id: Optional[str]

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "roomId": self.room_id,
            "socketId": self.socket_id,
        }


Metadata = Union[HostMetadata, ClientMetadata]


@dataclass
class Envelope:
    """Tagged relay message.

    Attributes:
        kind: Which role sent it and whether it was addressed.
        meta: Sender metadata, as received (camelCase keys).
        payload: Message body, possibly still stringified.
        to: Addressee (user id, socket id or ``HOST_ADDRESS``).
    """

    kind: EnvelopeKind
    meta: dict
    payload: Any = None
    to: Optional[str] = None

    @classmethod
    def build(
        cls,
        meta: Metadata,
        payload: Any,
        to: Optional[str] = None,
        stringify: bool = False,
    ) -> "Envelope":
        """Create an outgoing envelope for the sender described by ``meta``."""
        if isinstance(meta, HostMetadata):
            kind = EnvelopeKind.HOST_DIRECT if to else EnvelopeKind.HOST_BROADCAST
        else:
            kind = EnvelopeKind.CLIENT_DIRECT if to else EnvelopeKind.CLIENT_BROADCAST
        return cls(
            kind=kind,
            meta=meta.to_dict(),
            payload=json.dumps(payload) if stringify else payload,
            to=to,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        """Parse a received envelope.

        Envelopes from relays that drop ``kind`` are classified by their
        metadata: Client metadata carries ``userId``.
        """
        meta = data.get("meta") or {}
        to = data.get("to")
        try:
            kind = EnvelopeKind(data.get("kind"))
        except ValueError:
            if "userId" in meta:
                kind = EnvelopeKind.CLIENT_DIRECT if to else EnvelopeKind.CLIENT_BROADCAST
            else:
                kind = EnvelopeKind.HOST_DIRECT if to else EnvelopeKind.HOST_BROADCAST
        return cls(kind=kind, meta=meta, payload=data.get("payload"), to=to)

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value, "meta": self.meta, "payload": self.payload}
        if self.to is not None:
            data["to"] = self.to
        return data


def attach_metadata(data: dict, meta: Metadata) -> dict:
    """Return a copy of ``data`` with sender metadata under ``meta``."""
    return {**data, "meta": meta.to_dict()}


def decode_payload(raw: Any) -> Any:
    """Speculatively parse a received payload.

    Text is JSON-parsed, falling back to the text itself. For an
    envelope-shaped dict only its ``payload`` is parsed the same way and the
    rest is left untouched. Never raises.

    Examples:
        >>> decode_payload('{"a": 1}')
        {'a': 1}

        >>> decode_payload("hello")
        'hello'

        >>> decode_payload({"meta": {}, "payload": "[1, 2]"})
        {'meta': {}, 'payload': [1, 2]}
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            return raw
    if isinstance(raw, dict) and "payload" in raw:
        payload = raw["payload"]
        if isinstance(payload, (str, bytes, bytearray)):
            try:
                return {**raw, "payload": json.loads(payload)}
            except (ValueError, TypeError):
                pass
        return dict(raw)
    return raw
