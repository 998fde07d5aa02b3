"""WebSocket transport for the account subscription endpoint."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.config import redact_url
from .errors import StreamConnectionError, TransportDropped

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


async def websocket_connector(url: str) -> Any:
    """Open a client connection with library pings disabled.

    Liveness is handled by the session's own keepalive requests.
    """
    return await websockets.connect(url, ping_interval=None, close_timeout=5)


class WebSocketTransport:
    """Message-oriented wrapper around one websocket connection.

    Translates library exceptions into ``TransportDropped`` so the session
    never depends on ``websockets`` internals.
    """

    def __init__(self, websocket: Any, url: str):
        self.websocket = websocket
        self.url = url
        self._closed = False

    @classmethod
    async def open(cls, url: str, connector: Optional[Connector] = None) -> 'WebSocketTransport':
        """Connect to ``url``.

        Raises:
            StreamConnectionError: If the connection cannot be established
        """
        connector = connector or websocket_connector
        logger.debug(f"Opening websocket to {redact_url(url)}")
        try:
            websocket = await connector(url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise StreamConnectionError(f"Failed to connect to {redact_url(url)}: {e}") from e
        return cls(websocket, url)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_json(self, message: Dict[str, Any]) -> int:
        """Send ``message`` as a text frame and return its size in bytes."""
        if self._closed:
            raise TransportDropped("Transport is closed")

        message_str = json.dumps(message)
        try:
            await self.websocket.send(message_str)
        except ConnectionClosed as e:
            self._closed = True
            raise TransportDropped(str(e)) from e
        return len(message_str.encode())

    async def recv(self) -> str:
        """Wait for the next frame.

        Raises:
            TransportDropped: If the connection is closed
        """
        if self._closed:
            raise TransportDropped("Transport is closed")

        try:
            message = await self.websocket.recv()
        except ConnectionClosed as e:
            self._closed = True
            raise TransportDropped(str(e)) from e

        return message

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed and self.websocket is None:
            return
        self._closed = True
        websocket, self.websocket = self.websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except (OSError, WebSocketException) as e:
            logger.warning(f"Error closing websocket to {redact_url(self.url)}: {e}")
