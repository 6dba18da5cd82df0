"""Host role: creates a room and negotiates a data channel with every joiner.

Each ``client_joined`` notification spawns a ``PeerRecord`` driving its own
initiator-side ``Negotiation``. Records are registered before the first
await, and answers are matched by relay socket id, so handshakes running
concurrently on the event loop never see each other's state.
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Callable, List, Optional

from highnoon_rtc.config import SessionOptions
from highnoon_rtc.core.session import SessionCore, TransportFactory
from highnoon_rtc.exceptions import NotFoundError, NotInitializedError, WebRTCUnavailableError
from highnoon_rtc.host.peer import PeerRecord
from highnoon_rtc.negotiation import (
    Negotiation,
    NegotiationRole,
    default_capability_factory,
    is_webrtc_available,
)
from highnoon_rtc.protocol import (
    ERR_CLIENT_NOT_FOUND,
    ERR_HOST_NOT_INITIALIZED,
    ERR_ROOM_IN_PROGRESS,
    EVT_CLIENT_JOINED,
    EVT_CLIENT_RESPONSE,
    EVT_CONNECTED_CLIENTS,
    EVT_CREATE_ROOM,
    EVT_GET_CONNECTED_CLIENTS,
    EVT_MESSAGE,
    EVT_ROOM_CREATED,
    EVT_SEND_OFFER_TO_CLIENT,
    EVT_SERVER_SEND_MESSAGE,
    EVT_SERVER_SEND_MESSAGE_TO,
    EVT_UPDATE_CLIENT_LIST,
    HOST_ADDRESS,
    ON_CLIENT_CONNECTED,
    ON_CLIENT_DISCONNECTED,
    ON_CLIENT_LIST_UPDATED,
    ON_PACKET,
    ON_RELAY,
    Ack,
    ClientListData,
    CreateRoomData,
    Envelope,
    HNResponse,
    HostMetadata,
    Initialize,
    PeerInfo,
    attach_metadata,
    decode_payload,
)

logger = logging.getLogger(__name__)


class HostSession:
    """Room owner fanning out one negotiation per Client.

    Attributes:
        options: Immutable session configuration.
        core: Shared relay/session primitives.
        channel_name: Label of the data channels proposed to Clients.
        peers: Registry of joined Clients, in join order.
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
        self.core = SessionCore(options, "host", transport_factory)
        self.channel_name = options.channel_label("host")
        self.peers: List[PeerRecord] = []

        self._capability_factory = capability_factory
        self._creating_room = False
        self._tasks: set = set()

    # ===== Session state =====

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
    def metadata(self) -> HostMetadata:
        return HostMetadata(
            room_id=self.core.current_room,
            initialized=self.core.initialized,
            connected_to_room=self.core.connected_to_room,
        )

    def on(self, event: str, handler: Optional[Callable] = None):
        """Subscribe to a host event (usable as a decorator)."""
        return self.core.subscribe(event, handler)

    def off(self, event: str, handler: Callable) -> None:
        self.core.unsubscribe(event, handler)

    # ===== Initialization =====

    async def init(self) -> HNResponse[Initialize]:
        """Connect to the relay and register the host handlers.

        Returns:
            HNResponse with ``Initialize`` or a connection error.
        """
        response = await self.core.initialize(HOST_ADDRESS)
        self.core.initialized = response.ok and self.core.transport.connected

        self.core.attach(EVT_CLIENT_JOINED, self.create_peer_connection)
        self.core.attach(EVT_CLIENT_RESPONSE, self.connect_client)
        self.core.attach(EVT_GET_CONNECTED_CLIENTS, self._send_connected_clients)
        self.core.attach(EVT_MESSAGE, self._handle_relay_message)
        return response

    async def close(self) -> None:
        """Close every peer link and the relay connection."""
        peers, self.peers = self.peers, []
        for peer in peers:
            peer.close_channel()
            await peer.negotiation.close()
        await self.core.close()

    # ===== Room handlers =====

    async def create_room(self) -> HNResponse[CreateRoomData]:
        """Ask the relay for a room this host will own.

        Returns:
            HNResponse with the room id, or a timeout error. Once a room
            exists, later calls return it without contacting the relay.
        """
        if not self.core.initialized:
            return HNResponse.from_exception(NotInitializedError(ERR_HOST_NOT_INITIALIZED))
        if self.core.connected_to_room and self.core.current_room:
            return HNResponse.success(CreateRoomData(room=self.core.current_room))
        if self._creating_room:
            return HNResponse.failure(ERR_ROOM_IN_PROGRESS)

        self._creating_room = True
        try:
            return await self.core.request(
                EVT_CREATE_ROOM, None, {EVT_ROOM_CREATED: self._on_room_created}
            )
        finally:
            self._creating_room = False

    def _on_room_created(self, data: Any) -> HNResponse[CreateRoomData]:
        room_id = data.get("roomId") if isinstance(data, dict) else data
        self.core.connected_to_room = True
        self.core.current_room = room_id
        logger.info(f"Room created: {room_id}")
        return HNResponse.success(CreateRoomData(room=room_id))

    # ===== Messaging handlers =====

    def broadcast(self, payload: Any) -> None:
        """Send ``payload`` as JSON to every Client over the data channels."""
        self.core.debug(f"Broadcasting data channel message to {len(self.peers)} client(s)")
        message = json.dumps(payload)
        for peer in list(self.peers):
            peer.send(message)

    def send(self, user_id: str, payload: Any) -> HNResponse[Ack]:
        """Send ``payload`` as JSON to one Client over its data channel."""
        self.core.debug(f"Sending data channel message to {user_id}")
        peer = self._find_by_user(user_id)
        if peer is None:
            return HNResponse.from_exception(NotFoundError(ERR_CLIENT_NOT_FOUND))
        peer.send(json.dumps(payload))
        return HNResponse.success(Ack())

    def relay(self, payload: Any, stringify: bool = False) -> None:
        """Send ``payload`` to every room member through the relay."""
        self.core.debug("Relaying message to all clients")
        envelope = Envelope.build(self.metadata, payload, stringify=stringify)
        self.core.emit(EVT_SERVER_SEND_MESSAGE, envelope.to_dict())

    def relay_to(self, user_id: str, payload: Any, stringify: bool = False) -> HNResponse[Ack]:
        """Send ``payload`` to one Client through the relay."""
        self.core.debug(f"Relaying message to {user_id}")
        peer = self._find_by_user(user_id)
        if peer is None:
            return HNResponse.from_exception(NotFoundError(ERR_CLIENT_NOT_FOUND))
        envelope = Envelope.build(
            self.metadata, payload, to=peer.socket_id, stringify=stringify
        )
        self.core.emit(EVT_SERVER_SEND_MESSAGE_TO, envelope.to_dict())
        return HNResponse.success(Ack())

    # ===== Roster =====

    def get_connected_clients(self) -> ClientListData:
        """Current roster, projected from the peer registry."""
        return ClientListData(clients=[peer.info for peer in self.peers])

    def kick_client(self, user_id: str) -> ClientListData:
        """Close and forget the Client with ``user_id``.

        Unknown user ids are ignored.

        Returns:
            The roster after the removal.
        """
        peer = self._find_by_user(user_id)
        if peer is not None:
            logger.info(f"Kicking client: {user_id}")
            self._remove(peer)
            peer.close_channel()
            self._spawn(peer.negotiation.close())
            self._broadcast_client_list(is_join=False, removed_client=peer.info)
        return self.get_connected_clients()

    def _broadcast_client_list(
        self,
        is_join: bool,
        new_client: Optional[PeerInfo] = None,
        removed_client: Optional[PeerInfo] = None,
    ) -> None:
        update = {"isJoin": is_join, "clients": self.get_connected_clients().to_dict()}
        if new_client is not None:
            update["newClient"] = new_client.to_dict()
        if removed_client is not None:
            update["removedClient"] = removed_client.to_dict()
        update = attach_metadata(update, self.metadata)
        self.core.emit(EVT_UPDATE_CLIENT_LIST, update)
        self.core.publish(ON_CLIENT_LIST_UPDATED, update)

    def _send_connected_clients(self, data: Optional[dict] = None) -> None:
        requester = (data or {}).get("from")
        self.core.emit(
            EVT_CONNECTED_CLIENTS,
            attach_metadata(
                {"to": requester, "payload": self.get_connected_clients().to_dict()},
                self.metadata,
            ),
        )

    # ===== RTC handlers =====

    async def create_peer_connection(self, data: dict) -> None:
        """Start negotiating with a Client that just joined the room.

        Args:
            data: ``client_joined`` payload with ``userId`` and ``socketId``.
        """
        user_id = data.get("userId")
        socket_id = data.get("socketId")
        if not user_id or not socket_id:
            logger.warning(f"Ignoring malformed join notification: {data}")
            return
        if self._find_by_socket(socket_id) is not None:
            self.core.debug(f"Ignoring duplicate join for socket {socket_id}")
            return

        existing = self._find_by_user(user_id)
        if existing is not None:
            logger.warning(
                f"User id {user_id} rejoined from socket {socket_id}, "
                f"dropping previous socket {existing.socket_id}"
            )
            self._remove(existing)
            existing.close_channel()
            self._spawn(existing.negotiation.close())
            self.core.publish(
                ON_CLIENT_DISCONNECTED,
                {"meta": self.metadata.to_dict(), "userId": existing.user_id},
            )
            self._broadcast_client_list(is_join=False, removed_client=existing.info)

        logger.info(f"Client joined: {user_id} ({socket_id})")
        capability = self._capability_factory(self.core.ice_servers)
        negotiation = Negotiation(
            capability,
            NegotiationRole.INITIATOR,
            send=partial(self._send_offer, socket_id),
            name=user_id,
        )
        peer = PeerRecord(
            user_id=user_id,
            socket_id=socket_id,
            negotiation=negotiation,
            is_host=not self.peers,
        )
        self.peers.append(peer)

        channel = negotiation.open_channel(self.channel_name)
        peer.pending_channel = channel
        self._bind_channel(peer, channel)

        try:
            await negotiation.start()
        except Exception as e:
            logger.error(f"Failed to create offer for {user_id}: {e}")
            self._remove(peer)
            peer.close_channel()
            await negotiation.close()

    def _send_offer(self, socket_id: str, offer: dict, candidates: List[dict]) -> None:
        if self._find_by_socket(socket_id) is None:
            self.core.debug(f"Peer {socket_id} left before its offer was sent")
            return
        self.core.debug(f"Ice gathering complete, sending offer to {socket_id}")
        self.core.emit(
            EVT_SEND_OFFER_TO_CLIENT,
            {"to": socket_id, "offer": offer, "candidates": candidates},
        )

    async def connect_client(self, data: dict) -> None:
        """Apply a Client's answer to its peer record.

        Answers from unknown sockets, and repeated answers, are ignored.

        Args:
            data: ``client_response`` payload; ``from`` is the socket id.
        """
        socket_id = data.get("from")
        peer = self._find_by_socket(socket_id) if socket_id else None
        if peer is None:
            self.core.debug(f"Ignoring answer from unknown socket {socket_id}")
            return
        if peer.negotiation.remote_description is not None:
            self.core.debug(f"Ignoring repeated answer from {peer.user_id}")
            return

        self.core.debug(f"Received answer from {peer.user_id}")
        try:
            await peer.negotiation.apply_answer(
                data.get("answer"), data.get("candidates") or []
            )
        except Exception as e:
            logger.error(f"Failed to apply answer from {peer.user_id}: {e}")

    def _bind_channel(self, peer: PeerRecord, channel) -> None:
        @channel.on("open")
        def on_open():
            self._on_channel_open(peer, channel)

        @channel.on("close")
        def on_close():
            self._on_channel_close(peer)

        @channel.on("message")
        def on_message(message):
            self._handle_channel_message(peer, message)

    def _on_channel_open(self, peer: PeerRecord, channel) -> None:
        if not self._contains(peer):
            channel.close()
            return
        peer.channel = channel
        peer.pending_channel = None
        peer.negotiation.mark_connected()

        logger.info(f"Connection established with client: {peer.user_id}")
        self.core.publish(
            ON_CLIENT_CONNECTED,
            {"meta": self.metadata.to_dict(), "userId": peer.user_id},
        )
        self._broadcast_client_list(is_join=True, new_client=peer.info)

    def _on_channel_close(self, peer: PeerRecord) -> None:
        if not self._contains(peer):
            return
        logger.info(f"Channel closed with client: {peer.user_id}")
        self._remove(peer)
        self._spawn(peer.negotiation.close())
        self.core.publish(
            ON_CLIENT_DISCONNECTED,
            {"meta": self.metadata.to_dict(), "userId": peer.user_id},
        )
        self._broadcast_client_list(is_join=False, removed_client=peer.info)

    def _handle_channel_message(self, peer: PeerRecord, message: Any) -> None:
        self.core.publish(
            ON_PACKET,
            {
                "meta": self.metadata.to_dict(),
                "from": peer.info.to_dict(),
                "payload": decode_payload(message),
            },
        )

    def _handle_relay_message(self, data: dict) -> None:
        envelope = Envelope.from_dict(data or {})
        # Only messages addressed to the host are ours.
        if envelope.to != HOST_ADDRESS:
            return
        self.core.publish(ON_RELAY, decode_payload(data))

    # ===== Registry helpers =====

    def _find_by_user(self, user_id: str) -> Optional[PeerRecord]:
        return next((p for p in self.peers if p.user_id == user_id), None)

    def _find_by_socket(self, socket_id: str) -> Optional[PeerRecord]:
        return next((p for p in self.peers if p.socket_id == socket_id), None)

    def _contains(self, peer: PeerRecord) -> bool:
        return any(p is peer for p in self.peers)

    def _remove(self, peer: PeerRecord) -> None:
        self.peers = [p for p in self.peers if p is not peer]

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")
