"""Client role: joins a Host's room and answers its negotiation."""

import json
import logging
from enum import Enum
from functools import partial
from typing import Any, Callable, List, Optional

from highnoon_rtc.config import SessionOptions, random_suffix
from highnoon_rtc.core.session import SessionCore, TransportFactory
from highnoon_rtc.exceptions import (
    NotConnectedError,
    NotInitializedError,
    WebRTCUnavailableError,
)
from highnoon_rtc.negotiation import (
    Negotiation,
    NegotiationRole,
    default_capability_factory,
    is_webrtc_available,
)
from highnoon_rtc.protocol import (
    ERR_NOT_CONNECTED,
    ERR_NOT_INITIALIZED,
    ERR_ROOM_NOT_FOUND,
    EVT_CLIENT_SEND_MESSAGE,
    EVT_CLIENT_SEND_MESSAGE_TO,
    EVT_CONNECTED_CLIENTS,
    EVT_GET_CONNECTED_CLIENTS,
    EVT_JOIN_ROOM,
    EVT_MESSAGE,
    EVT_ROOM_JOINED,
    EVT_ROOM_NOT_FOUND,
    EVT_SEND_CLIENT_OFFER_RESPONSE,
    EVT_SERVER_OFFER,
    EVT_UPDATE_CLIENT_LIST,
    ON_CLIENT_LIST_UPDATED,
    ON_DISCONNECTED,
    ON_PACKET,
    ON_RELAY,
    ON_RELAY_FROM_CLIENT,
    ON_RELAY_FROM_SERVER,
    ON_SERVER_CONNECTION_ESTABLISHED,
    Ack,
    ClientListData,
    ClientMetadata,
    Envelope,
    HNResponse,
    Initialize,
    RoomJoinData,
    decode_payload,
)

logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    CREATED = "created"
    TRANSPORT_READY = "transport_ready"
    ANSWER_SENT = "answer_sent"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class ClientSession:
    """Room member holding one data channel to the Host.

    Attributes:
        options: Immutable session configuration.
        core: Shared relay/session primitives.
        user_id: Id announced to the room, suffixed to stay unique.
        state: Current ``ClientState``.
        socket_id: Relay session id assigned on join.
        negotiation: Responder handshake, None until the Host's offer arrives.
        channel: Data channel to the Host once it arrived.
        foreign_peers: Last roster broadcast by the Host.
    """

    def __init__(
        self,
        options: SessionOptions,
        capability_factory: Optional[Callable] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        if capability_factory is None:
            if not is_webrtc_available():
                raise WebRTCUnavailableError("WebRTC is not available in this environment")
            capability_factory = default_capability_factory

        self.options = options
        self.core = SessionCore(options, "client", transport_factory)
        self.channel_name = options.channel_label("client")
        if options.user_id:
            self.user_id = f"{options.user_id}-{random_suffix(4)}"
        else:
            self.user_id = f"user-{random_suffix(8)}"

        self.state = ClientState.CREATED
        self.socket_id: Optional[str] = None
        self.negotiation: Optional[Negotiation] = None
        self.channel = None
        self.foreign_peers = ClientListData()

        self._capability_factory = capability_factory

    @property
    def initialized(self) -> bool:
        return self.core.initialized

    @property
    def connected_to_room(self) -> bool:
        return self.core.connected_to_room

    @property
    def current_room(self) -> Optional[str]:
        return self.core.current_room

    @property
    def metadata(self) -> ClientMetadata:
        return ClientMetadata(
            user_id=self.user_id,
            room_id=self.core.current_room,
            socket_id=self.socket_id,
        )

    def on(self, event: str, handler: Optional[Callable] = None):
        """Subscribe to a client event (usable as a decorator)."""
        return self.core.subscribe(event, handler)

    def off(self, event: str, handler: Callable) -> None:
        self.core.unsubscribe(event, handler)

    # ===== Initialization =====

    async def init(self) -> HNResponse[Initialize]:
        """Connect to the relay and register the client handlers."""
        response = await self.core.initialize(self.user_id)
        self.core.initialized = response.ok and self.core.transport.connected
        if self.core.initialized and self.state == ClientState.CREATED:
            self.state = ClientState.TRANSPORT_READY

        self.core.attach(EVT_SERVER_OFFER, self._handle_server_offer)
        self.core.attach(EVT_MESSAGE, self._handle_relay_message)
        self.core.attach(EVT_UPDATE_CLIENT_LIST, self._handle_client_list_update)
        return response

    async def close(self) -> None:
        """Close the data channel, the negotiation and the relay connection."""
        self.state = ClientState.CLOSED
        if self.channel is not None and self.channel.readyState != "closed":
            self.channel.close()
        if self.negotiation is not None:
            await self.negotiation.close()
        await self.core.close()

    # ===== Room handlers =====

    async def connect_to_room(self, room_id: str) -> HNResponse[RoomJoinData]:
        """Join the room ``room_id``.

        Returns:
            HNResponse with ``RoomJoinData``, or "Room not found", or a
            timeout error.
        """
        if not self.core.initialized:
            return HNResponse.from_exception(NotInitializedError(ERR_NOT_INITIALIZED))

        self.core.debug(f"Joining room {room_id} as {self.user_id}")
        return await self.core.request(
            EVT_JOIN_ROOM,
            {"roomId": room_id, "userId": self.user_id},
            {
                EVT_ROOM_JOINED: partial(self._on_room_joined, room_id),
                EVT_ROOM_NOT_FOUND: self._on_room_not_found,
            },
        )

    def _on_room_joined(self, room_id: str, data: Optional[dict]) -> HNResponse[RoomJoinData]:
        data = data or {}
        self.core.connected_to_room = True
        self.core.current_room = data.get("roomId") or room_id
        self.socket_id = data.get("socketId")
        logger.info(f"Joined room {self.core.current_room}")
        return HNResponse.success(
            RoomJoinData(
                room=self.core.current_room,
                connected_clients=data.get("connectedClients", 0),
            )
        )

    def _on_room_not_found(self, data: Any = None) -> HNResponse[RoomJoinData]:
        logger.warning("Room not found")
        return HNResponse.failure(ERR_ROOM_NOT_FOUND)

    async def get_connected_clients(self) -> HNResponse[ClientListData]:
        """Ask the Host, through the relay, for the current roster."""
        if not self.core.connected_to_room or not self.core.current_room:
            return HNResponse.from_exception(NotConnectedError(ERR_NOT_CONNECTED))

        return await self.core.request(
            EVT_GET_CONNECTED_CLIENTS,
            {"roomId": self.core.current_room, "from": self.socket_id},
            {EVT_CONNECTED_CLIENTS: self._on_connected_clients},
        )

    def _on_connected_clients(self, data: Optional[dict]) -> HNResponse[ClientListData]:
        data = data or {}
        roster = ClientListData.from_dict(data.get("payload", data))
        return HNResponse.success(roster)

    def _handle_client_list_update(self, data: Optional[dict]) -> None:
        data = data or {}
        self.foreign_peers = ClientListData.from_dict(data.get("clients"))
        self.core.debug(f"Room roster updated: {self.foreign_peers.count} client(s)")
        self.core.publish(ON_CLIENT_LIST_UPDATED, data)

    # ===== Messaging handlers =====

    def send(self, payload: Any) -> None:
        """Send ``payload`` as JSON to the Host if the data channel is open."""
        if self.channel is None or self.channel.readyState != "open":
            self.core.debug("No open data channel, message not sent")
            return
        self.channel.send(json.dumps(payload))

    def relay(self, payload: Any, to: Optional[str] = None, stringify: bool = False) -> None:
        """Send ``payload`` through the relay.

        Args:
            payload: Message body.
            to: Addressee user id, or "server" for the Host. Everyone in the
                room when omitted.
            stringify: JSON-encode the payload before sending.
        """
        envelope = Envelope.build(self.metadata, payload, to=to, stringify=stringify)
        event = EVT_CLIENT_SEND_MESSAGE_TO if to else EVT_CLIENT_SEND_MESSAGE
        self.core.debug(f"Relaying message via {event}")
        self.core.emit(event, envelope.to_dict())

    def relay_to(self, user_id: str, payload: Any, stringify: bool = False) -> HNResponse[Ack]:
        """Send ``payload`` to one room member through the relay."""
        if not self.core.connected_to_room:
            return HNResponse.from_exception(NotConnectedError(ERR_NOT_CONNECTED))
        self.relay(payload, to=user_id, stringify=stringify)
        return HNResponse.success(Ack())

    def _handle_relay_message(self, data: Optional[dict]) -> None:
        envelope = Envelope.from_dict(data or {})
        message = decode_payload(data)
        if envelope.kind.from_host:
            self.core.publish(ON_RELAY_FROM_SERVER, message)
        else:
            self.core.publish(ON_RELAY_FROM_CLIENT, message)
        self.core.publish(ON_RELAY, message)

    # ===== RTC handlers =====

    async def _handle_server_offer(self, data: dict) -> None:
        offer = data.get("offer")
        if not offer:
            logger.warning("Ignoring offer without a session description")
            return
        if self.negotiation is not None and not self.negotiation.closed:
            if self.negotiation.remote_description == offer:
                self.core.debug("Ignoring repeated offer")
                return
            logger.info("Received a new offer, restarting negotiation")
            await self.negotiation.close()

        capability = self._capability_factory(self.core.ice_servers)
        capability.on("datachannel", self._on_datachannel)
        negotiation = Negotiation(
            capability,
            NegotiationRole.RESPONDER,
            send=self._send_answer,
            name=self.user_id,
        )
        self.negotiation = negotiation

        self.core.debug("Received offer from host")
        try:
            await negotiation.accept(offer, data.get("candidates") or [])
        except Exception as e:
            logger.error(f"Failed to answer the host's offer: {e}")
            await negotiation.close()

    def _send_answer(self, answer: dict, candidates: List[dict]) -> None:
        self.core.debug("Ice gathering complete, sending answer to host")
        self.core.emit(
            EVT_SEND_CLIENT_OFFER_RESPONSE,
            {
                "answer": answer,
                "candidates": candidates,
                "userId": self.user_id,
                "roomId": self.core.current_room,
            },
        )
        if self.state != ClientState.CLOSED:
            self.state = ClientState.ANSWER_SENT

    def _on_datachannel(self, channel) -> None:
        if self.state == ClientState.CLOSED:
            self.core.debug(f"Closing data channel {channel.label} opened after close()")
            channel.close()
            return
        if self.channel is not None and self.channel.readyState != "closed":
            self.core.debug(f"Ignoring extra data channel: {channel.label}")
            return
        self.channel = channel

        @channel.on("message")
        def on_message(message):
            self.core.publish(
                ON_PACKET,
                {"meta": self.metadata.to_dict(), "payload": decode_payload(message)},
            )

        @channel.on("close")
        def on_close():
            self._on_channel_close(channel)

        if self.negotiation is not None:
            self.negotiation.mark_connected()
        self.state = ClientState.CONNECTED
        logger.info("Connection established with host")
        self.core.publish(ON_SERVER_CONNECTION_ESTABLISHED, {"meta": self.metadata.to_dict()})

    def _on_channel_close(self, channel) -> None:
        if channel is not self.channel:
            return
        logger.info("Data channel to host closed")
        if self.state != ClientState.CLOSED:
            self.state = ClientState.DISCONNECTED
        self.core.publish(ON_DISCONNECTED, {"meta": self.metadata.to_dict()})
