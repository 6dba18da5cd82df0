"""Relay transport: an authenticated, reconnecting named-event channel.

Frames are JSON objects ``{"event": name, "data": payload}`` carried over a
single websocket. Outgoing frames go through an outbox so ``emit`` never
blocks and frames sent while the socket is reconnecting are delivered once
it is back.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import websockets
from pyee.asyncio import AsyncIOEventEmitter
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from highnoon_rtc.exceptions import (
    RelayAuthenticationError,
    RelayConnectionError,
    RelayTimeoutError,
)
from highnoon_rtc.protocol import EVT_DISCONNECT, EVT_RECONNECT

logger = logging.getLogger(__name__)

# Global constants.
MAX_RECONNECT_ATTEMPTS = 5
RETRY_DELAY = 2  # seconds
OPEN_TIMEOUT = 10  # seconds
AUTH_REJECTED_STATUSES = {401, 403}


def encode_frame(event: str, data: Any = None) -> str:
    """Serialize one relay frame."""
    return json.dumps({"event": event, "data": data})


def decode_frame(message: Any) -> Optional[tuple]:
    """Parse one relay frame into ``(event, data)``.

    Returns:
        None if the frame is not valid JSON or has no event name.
    """
    try:
        frame = json.loads(message)
    except (ValueError, TypeError):
        logger.error("Invalid JSON received from relay")
        return None
    if not isinstance(frame, dict) or not frame.get("event"):
        logger.warning(f"Ignoring relay frame without event name: {frame!r}")
        return None
    return frame["event"], frame.get("data")


class RelayTransport:
    """Named-event channel to the relay service.

    Attributes:
        url: Relay websocket URL.
        role: "host" or "client", sent during the handshake.
        identity: Identity hint sent during the handshake.
        websocket: Current connection, None while disconnected.
    """

    def __init__(
        self,
        url: str,
        project_id: str,
        api_token: str,
        role: str,
        identity: str,
        open_timeout: float = OPEN_TIMEOUT,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ):
        self.url = url
        self.role = role
        self.identity = identity
        self.open_timeout = open_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.retry_delay = retry_delay
        self._project_id = project_id
        self._api_token = api_token

        self.websocket = None
        self._events = AsyncIOEventEmitter()
        self._events.on("error", self._on_handler_error)
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._reconnected = asyncio.Event()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self.websocket is not None and not self._closing

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "X-Project-Id": self._project_id,
            "X-Peer-Type": self.role,
            "X-User-Id": self.identity,
        }

    async def _open(self):
        """Open one websocket connection.

        Raises:
            RelayAuthenticationError: The relay rejected the credentials.
            RelayTimeoutError: The handshake did not finish in time.
            RelayConnectionError: The relay could not be reached.
        """
        try:
            return await websockets.connect(
                self.url,
                additional_headers=self._headers(),
                open_timeout=self.open_timeout,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in AUTH_REJECTED_STATUSES:
                raise RelayAuthenticationError(
                    f"Relay rejected credentials (HTTP {status})"
                ) from e
            raise RelayConnectionError(f"Relay handshake failed (HTTP {status})") from e
        except asyncio.TimeoutError as e:
            # TimeoutError is an OSError, so it must be matched first.
            raise RelayTimeoutError(
                f"Relay at {self.url} did not answer within {self.open_timeout}s"
            ) from e
        except (OSError, InvalidHandshake) as e:
            raise RelayConnectionError(f"Could not reach relay at {self.url}: {e}") from e

    async def connect(self) -> None:
        """Connect to the relay and start the read/write loops."""
        if self.connected:
            return
        self._closing = False
        logger.info(f"Connecting to relay at {self.url} as {self.role}...")
        self.websocket = await self._open()
        self._reconnected.set()
        logger.info("Connected to relay")
        self._reader_task = asyncio.create_task(self._read_loop())
        if self._writer_task is None or self._writer_task.done():
            self._writer_task = asyncio.create_task(self._write_loop())

    async def _reconnect(self) -> bool:
        """Reopen the websocket after an unexpected close.

        Returns:
            True if reconnection was successful, False otherwise.
        """
        self.websocket = None
        self._reconnected.clear()
        attempts = 0
        while attempts < self.max_reconnect_attempts and not self._closing:
            attempts += 1
            logger.info(
                f"Relay reconnection attempt {attempts}/{self.max_reconnect_attempts}..."
            )
            try:
                self.websocket = await self._open()
            except RelayAuthenticationError as e:
                logger.error(f"Relay reconnection rejected: {e}")
                return False
            except RelayConnectionError as e:
                logger.warning(f"Relay reconnection failed: {e}")
                await asyncio.sleep(self.retry_delay)
                continue
            self._reconnected.set()
            self._events.emit(EVT_RECONNECT, None)
            logger.info("Reconnected to relay")
            return True

        logger.error("Maximum relay reconnection attempts reached")
        return False

    async def _read_loop(self) -> None:
        """Dispatch incoming frames to registered handlers until closed."""
        while not self._closing:
            try:
                async for message in self.websocket:
                    decoded = decode_frame(message)
                    if decoded is None:
                        continue
                    event, data = decoded
                    logger.debug(f"Relay event received: {event}")
                    self._events.emit(event, data)
            except ConnectionClosed as e:
                logger.warning(f"Relay connection closed: {e}")

            if self._closing:
                break
            if not await self._reconnect():
                self._events.emit(EVT_DISCONNECT, None)
                break

    async def _write_loop(self) -> None:
        """Send queued frames, waiting out reconnections."""
        while True:
            frame = await self._outbox.get()
            while not self._closing:
                await self._reconnected.wait()
                websocket = self.websocket
                if websocket is None:
                    self._reconnected.clear()
                    continue
                try:
                    await websocket.send(frame)
                    break
                except ConnectionClosed:
                    # The reader notices the close and reconnects.
                    if self.websocket is websocket:
                        self._reconnected.clear()

    def on(self, event: str, handler: Callable) -> None:
        self._events.on(event, handler)

    def off(self, event: str, handler: Optional[Callable] = None) -> None:
        """Remove one handler, or every handler for ``event``."""
        if handler is None:
            self._events.remove_all_listeners(event)
            return
        try:
            self._events.remove_listener(event, handler)
        except KeyError:
            pass

    def emit(self, event: str, data: Any = None) -> None:
        """Queue an event for the relay."""
        logger.debug(f"Relay event queued: {event}")
        self._outbox.put_nowait(encode_frame(event, data))

    async def close(self) -> None:
        self._closing = True
        for task in (self._reader_task, self._writer_task):
            if task and not task.done():
                task.cancel()
        self._reader_task = self._writer_task = None
        if self.websocket is not None:
            await self.websocket.close()
        self.websocket = None
        logger.info("Relay connection closed")

    def _on_handler_error(self, exc: Exception) -> None:
        logger.error(f"Relay event handler raised: {exc!r}")
