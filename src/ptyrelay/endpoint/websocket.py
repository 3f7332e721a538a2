"""Connection adapter over a Starlette/FastAPI WebSocket.

Maps the ASGI message stream onto the relay's Connection interface:
text frames become ``str``, binary frames become ``bytes``, and the
disconnect event becomes ``None``.
"""

from __future__ import annotations

import logging

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ptyrelay.relay.connection import Connection, ConnectionClosedError

logger = logging.getLogger(__name__)


class WebSocketConnection(Connection):
    """Wraps an accepted WebSocket for use by a TerminalSession."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False
        self._close_sent = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def receive(self) -> str | bytes | None:
        if self._closed:
            return None
        try:
            message = await self._websocket.receive()
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise ConnectionClosedError(f"WebSocket receive failed: {e}") from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            logger.debug("WebSocket disconnected (code=%s)", message.get("code"))
            return None
        if message.get("bytes") is not None:
            return message["bytes"]
        if message.get("text") is not None:
            return message["text"]
        return b""

    async def send_bytes(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionClosedError("WebSocket is closed")
        try:
            await self._websocket.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise ConnectionClosedError(f"WebSocket send failed: {e}") from e

    async def close(self) -> None:
        if self._close_sent:
            return
        self._close_sent = True
        self._closed = True
        ws = self._websocket
        # Skip the handshake when the client already went away
        if ws.application_state != WebSocketState.CONNECTED:
            return
        if ws.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await ws.close()
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug("WebSocket close failed: %s", e)
