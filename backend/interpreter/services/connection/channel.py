"""
Client Channel Adapter

Wraps a FastAPI WebSocket as a ClientChannel.
"""
import logging
from typing import Any, Dict, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from interpreter.services.exceptions import ClientDisconnectedError

logger = logging.getLogger(__name__)


class WebSocketClientChannel:
    """Represents one browser connection."""

    def __init__(self, websocket: WebSocket, label: str = ""):
        self.websocket = websocket
        self.label = label

    @property
    def is_connected(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, data: Dict[str, Any]) -> bool:
        """Send JSON message to this connection."""
        if not self.is_connected:
            return False
        try:
            await self.websocket.send_json(data)
            return True
        except Exception as e:
            logger.error(f"[ClientChannel] Error sending JSON to {self.label}: {e}")
            return False

    async def ping(self) -> bool:
        return await self.send_json({"type": "ping"})

    async def receive(self) -> Union[bytes, str]:
        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            raise ClientDisconnectedError(str(e)) from e

        if message.get("type") == "websocket.disconnect":
            raise ClientDisconnectedError(f"code={message.get('code')}")
        if message.get("bytes") is not None:
            return message["bytes"]
        if message.get("text") is not None:
            return message["text"]
        return b""

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.is_connected:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"[ClientChannel] Close on {self.label} ignored: {e}")
