"""Entry point for the highnoon-rtc client CLI."""

import asyncio
import logging

from highnoon_rtc.client.client_class import ClientSession
from highnoon_rtc.config import SessionOptions
from highnoon_rtc.exceptions import RelayConnectionError
from highnoon_rtc.protocol import (
    HOST_ADDRESS,
    ON_CLIENT_LIST_UPDATED,
    ON_DISCONNECTED,
    ON_PACKET,
    ON_RELAY,
    ON_RELAY_DISCONNECTED,
    ON_SERVER_CONNECTION_ESTABLISHED,
)

logging.basicConfig(level=logging.INFO)


async def join_room(
    client: ClientSession,
    room_id: str,
    message: str = None,
    stop: asyncio.Event = None,
) -> None:
    """Initialize ``client``, join ``room_id`` and stay until ``stop`` is set.

    When ``message`` is given it is relayed to the host right after joining
    and sent again over the data channel once it opens.

    Raises:
        RelayConnectionError: The relay could not be reached or the room
            could not be joined.
    """
    response = await client.init()
    if not response.ok:
        raise RelayConnectionError(response.error)

    stop = stop or asyncio.Event()

    @client.on(ON_SERVER_CONNECTION_ESTABLISHED)
    def on_connected(event):
        logging.info("Data channel to host is open")
        if message:
            client.send({"message": message, "userId": client.user_id})

    @client.on(ON_DISCONNECTED)
    def on_disconnected(event):
        logging.info("Host connection closed")
        stop.set()

    @client.on(ON_PACKET)
    def on_packet(event):
        logging.info(f"Packet from host: {event['payload']}")

    @client.on(ON_RELAY)
    def on_relay(event):
        logging.info(f"Relayed message: {event.get('payload')}")

    @client.on(ON_RELAY_DISCONNECTED)
    def on_relay_disconnected(event):
        logging.warning("Relay connection lost, the data channel stays open")

    @client.on(ON_CLIENT_LIST_UPDATED)
    def on_client_list_updated(event):
        logging.info(f"Room now has {client.foreign_peers.count} client(s)")

    joined = await client.connect_to_room(room_id)
    if not joined.ok:
        await client.close()
        raise RelayConnectionError(joined.error)
    logging.info(
        f"Joined room {joined.data.room} as {client.user_id} "
        f"({joined.data.connected_clients} client(s) connected)"
    )

    if message:
        client.relay({"message": message}, to=HOST_ADDRESS)

    try:
        await stop.wait()
    finally:
        await client.close()


def run_client(
    room_id: str,
    project_id: str,
    api_token: str,
    user_id: str = None,
    message: str = None,
    show_debug: bool = False,
    signalling: str = None,
):
    """Create a ClientSession and stay in ``room_id`` until interrupted.

    Args:
        room_id: Room to join.
        project_id: Project id used to authenticate with the relay.
        api_token: API token used to authenticate with the relay.
        user_id: Optional user id prefix.
        message: Optional message sent to the host after joining.
        show_debug: Log session diagnostics at INFO level.
        signalling: Optional relay URL overriding the configured one.
    """
    options = SessionOptions.from_config(
        project_id,
        api_token,
        user_id=user_id,
        show_debug=show_debug or None,
        signalling_override=signalling,
    )
    client = ClientSession(options)

    try:
        asyncio.run(join_room(client, room_id, message=message))
    except KeyboardInterrupt:
        logging.info("Client interrupted by user. Shutting down...")
    finally:
        logging.info("Client exiting...")
