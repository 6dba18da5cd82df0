"""Entry point for the highnoon-rtc host CLI."""

import asyncio
import logging

from highnoon_rtc.config import SessionOptions
from highnoon_rtc.exceptions import RelayConnectionError
from highnoon_rtc.host.host_class import HostSession
from highnoon_rtc.protocol import (
    ON_CLIENT_CONNECTED,
    ON_CLIENT_DISCONNECTED,
    ON_PACKET,
    ON_RELAY,
    ON_RELAY_DISCONNECTED,
)

logging.basicConfig(level=logging.INFO)


async def serve_host(host: HostSession, stop: asyncio.Event = None) -> str:
    """Initialize ``host``, create its room and serve until ``stop`` is set.

    Returns:
        The room id.

    Raises:
        RelayConnectionError: The relay could not be reached or no room
            could be created.
    """
    response = await host.init()
    if not response.ok:
        raise RelayConnectionError(response.error)

    room = await host.create_room()
    if not room.ok:
        raise RelayConnectionError(room.error)
    logging.info(f"Room ready: {room.data.room}")
    logging.info(f"Clients join with: highnoon-rtc client {room.data.room}")

    stop = stop or asyncio.Event()

    @host.on(ON_CLIENT_CONNECTED)
    def on_client_connected(event):
        logging.info(
            f"Client connected: {event['userId']} "
            f"({host.get_connected_clients().count} in room)"
        )

    @host.on(ON_CLIENT_DISCONNECTED)
    def on_client_disconnected(event):
        logging.info(f"Client disconnected: {event['userId']}")

    @host.on(ON_PACKET)
    def on_packet(event):
        logging.info(f"Packet from {event['from']['userId']}: {event['payload']}")

    @host.on(ON_RELAY)
    def on_relay(event):
        sender = event.get("meta", {}).get("userId")
        logging.info(f"Relayed message from {sender}: {event.get('payload')}")

    @host.on(ON_RELAY_DISCONNECTED)
    def on_relay_disconnected(event):
        logging.error(f"Relay connection lost, room {event['roomId']} is gone")
        stop.set()

    try:
        await stop.wait()
    finally:
        await host.close()
    return room.data.room


def run_host(
    project_id: str,
    api_token: str,
    channel_name: str = None,
    show_debug: bool = False,
    signalling: str = None,
):
    """Create a HostSession and serve a room until interrupted.

    Args:
        project_id: Project id used to authenticate with the relay.
        api_token: API token used to authenticate with the relay.
        channel_name: Optional data channel name suffix.
        show_debug: Log session diagnostics at INFO level.
        signalling: Optional relay URL overriding the configured one.
    """
    options = SessionOptions.from_config(
        project_id,
        api_token,
        channel_name=channel_name,
        show_debug=show_debug or None,
        signalling_override=signalling,
    )
    host = HostSession(options)

    try:
        asyncio.run(serve_host(host))
    except KeyboardInterrupt:
        logging.info("Host interrupted by user. Shutting down...")
    finally:
        logging.info("Host exiting...")
