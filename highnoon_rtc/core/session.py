"""Shared session lifecycle for Host and Client roles.

``SessionCore`` is composed into ``HostSession`` and ``ClientSession``. It
owns the relay transport, correlates relay requests with their responses,
and exposes the domain event bus the embedding application subscribes to.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from highnoon_rtc.config import SessionOptions, random_suffix
from highnoon_rtc.core.events import EventBus
from highnoon_rtc.core.transport import RelayTransport
from highnoon_rtc.exceptions import (
    RelayAuthenticationError,
    RelayConnectionError,
    RelayTimeoutError,
    RequestTimeoutError,
)
from highnoon_rtc.protocol import (
    ERR_AUTHENTICATION,
    ERR_CONNECT_TIMEOUT,
    ERR_CONNECTION,
    ERR_TIMEOUT,
    EVT_DISCONNECT,
    EVT_GET_TURN_AUTH,
    EVT_RECONNECT,
    EVT_TURN_AUTH,
    ON_RELAY_DISCONNECTED,
    ON_RELAY_RECONNECTED,
    HNResponse,
    Initialize,
    decode_payload,
)

logger = logging.getLogger(__name__)

# Builds the relay transport: (url, project_id, api_token, role, identity).
TransportFactory = Callable[[str, str, str, str, str], Any]


class SessionCore:
    """Relay transport lifecycle and primitives shared by both roles.

    Attributes:
        options: Immutable session configuration.
        role: "host" or "client".
        transport: Relay transport, None until ``initialize``.
        ice_servers: Session copy of the ICE hints, extended by the relay.
        initialized: True once the transport reported connected.
        connected_to_room: True once a room was created or joined.
        current_room: Current room id.
    """

    def __init__(
        self,
        options: SessionOptions,
        role: str,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.options = options
        self.role = role
        self.transport = None
        self.ice_servers: List[dict] = [dict(s) for s in options.ice_servers]
        self.initialized = False
        self.connected_to_room = False
        self.current_room: Optional[str] = None

        self._transport_factory = transport_factory or RelayTransport
        self._bus = EventBus()

    # ===== Initialization =====

    async def initialize(self, identity: Optional[str] = None) -> HNResponse[Initialize]:
        """Connect to the relay and fetch extra ICE hints.

        Args:
            identity: Identity hint sent to the relay. Random if omitted.

        Returns:
            ``Initialize`` on success, or a connection/authentication error.
        """
        if self.transport is not None and self.transport.connected:
            self.debug("Relay transport already connected")
            return HNResponse.success(Initialize())

        if self.transport is None:
            self.transport = self._transport_factory(
                self.options.signalling_url(),
                self.options.project_id,
                self.options.api_token,
                self.role,
                identity or random_suffix(4),
            )
            self.attach(EVT_DISCONNECT, self._on_relay_lost)
            self.attach(EVT_RECONNECT, self._on_relay_reconnected)

        try:
            await self.transport.connect()
        except RelayAuthenticationError as e:
            logger.error(
                f"Error establishing a signalling connection: {e}. "
                "Check that your project_id and api_token are correct."
            )
            return HNResponse.failure(ERR_AUTHENTICATION)
        except RelayTimeoutError as e:
            logger.error(f"Error establishing a signalling connection: {e}")
            return HNResponse.failure(ERR_CONNECT_TIMEOUT)
        except RelayConnectionError as e:
            logger.error(f"Error establishing a signalling connection: {e}")
            return HNResponse.failure(ERR_CONNECTION)

        hints = await self.request(EVT_GET_TURN_AUTH, None, {EVT_TURN_AUTH: self._add_ice_hints})
        if not hints.ok:
            logger.warning("No relay ICE hints received, continuing with configured hints")

        return HNResponse.success(Initialize())

    def _add_ice_hints(self, data: Any) -> int:
        servers = data if isinstance(data, list) else [data]
        added = [
            s
            for s in servers
            if isinstance(s, dict) and s.get("urls") and s not in self.ice_servers
        ]
        self.ice_servers.extend(added)
        self.debug(f"Received {len(added)} ICE hint(s) from relay")
        return len(added)

    def _on_relay_lost(self, data: Any = None) -> None:
        """Forget relay-backed state once reconnection gave up."""
        logger.error("Relay connection lost, call init() to reconnect")
        room_id = self.current_room
        self.initialized = False
        self.connected_to_room = False
        self.current_room = None
        self.publish(ON_RELAY_DISCONNECTED, {"roomId": room_id})

    def _on_relay_reconnected(self, data: Any = None) -> None:
        # The relay assigns a new socket id on every connection.
        logger.warning("Relay connection restored with a new socket")
        self.publish(ON_RELAY_RECONNECTED, {"roomId": self.current_room})

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()
        self.initialized = False
        self.connected_to_room = False

    # ===== Relay primitives =====

    def attach(self, event: str, handler: Callable) -> None:
        """Register the single relay handler for ``event``.

        Previous handlers are dropped first, so calling ``init`` again never
        duplicates dispatch.
        """
        self.transport.off(event)
        self.transport.on(event, handler)

    def emit(self, event: str, data: Any = None) -> None:
        self.transport.emit(event, data)

    async def request(
        self,
        event: str,
        data: Any,
        outcomes: Dict[str, Callable[[Any], HNResponse]],
        timeout: Optional[float] = None,
    ) -> HNResponse:
        """Send a relay request and wait for the first terminal response.

        Args:
            event: Relay event to emit.
            data: Event payload.
            outcomes: Response event name -> mapper turning its payload into
                the result. Only the first response is mapped; later ones
                are ignored.
            timeout: Seconds to wait (session default if omitted).

        Returns:
            The mapped result, or a timeout error.
        """
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()
        handlers = {}

        def make_handler(name, mapper):
            def handler(payload=None):
                if result.done():
                    self.debug(f"Ignoring duplicate {name} response to {event}")
                    return
                try:
                    result.set_result(mapper(payload))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.error(f"Malformed {name} response: {e!r}")
                    result.set_result(HNResponse.failure(f"Malformed {name} response"))

            return handler

        for name, mapper in outcomes.items():
            handlers[name] = make_handler(name, mapper)
            self.transport.on(name, handlers[name])

        try:
            self.emit(event, data)
            response = await asyncio.wait_for(
                result, timeout=timeout or self.options.request_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Relay request {event} timed out")
            response = HNResponse.from_exception(RequestTimeoutError(ERR_TIMEOUT))
        finally:
            for name, handler in handlers.items():
                self.transport.off(name, handler)

        if not isinstance(response, HNResponse):
            response = HNResponse.success(response)
        return response

    # ===== Domain events =====

    def publish(self, event: str, payload: Any = None) -> None:
        self._bus.publish(event, payload)

    def subscribe(self, event: str, handler: Optional[Callable] = None):
        return self._bus.subscribe(event, handler)

    def unsubscribe(self, event: str, handler: Callable) -> None:
        self._bus.unsubscribe(event, handler)

    # ===== Helpers =====

    @staticmethod
    def decode_payload(raw: Any) -> Any:
        return decode_payload(raw)

    def debug(self, message: str) -> None:
        if self.options.show_debug:
            logger.info(message)
        else:
            logger.debug(message)
