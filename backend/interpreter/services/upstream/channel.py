"""
Upstream Channel - websockets transport to the realtime provider

Usage:
    from interpreter.services.upstream.channel import connect_upstream

    channel = await connect_upstream()
    await channel.send({"type": "input_audio_buffer.commit"})
    event = await channel.receive()
"""
import json
import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from interpreter.config.settings import settings
from interpreter.services.exceptions import UpstreamClosedError, UpstreamHandshakeError

logger = logging.getLogger(__name__)


class WebsocketsUpstreamChannel:
    """UpstreamChannel over a websockets client connection."""

    def __init__(self, connection):
        self._connection = connection

    async def send(self, message: Dict[str, Any]) -> None:
        try:
            await self._connection.send(json.dumps(message))
        except ConnectionClosed as e:
            raise UpstreamClosedError(str(e)) from e

    async def receive(self) -> Dict[str, Any]:
        while True:
            try:
                raw = await self._connection.recv()
            except ConnectionClosed as e:
                raise UpstreamClosedError(str(e)) from e
            try:
                message = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("[UpstreamChannel] Dropping non-JSON frame")
                continue
            if isinstance(message, dict):
                return message
            logger.warning("[UpstreamChannel] Dropping frame without an event object")

    async def close(self) -> None:
        await self._connection.close()


async def connect_upstream(
    url: Optional[str] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
) -> WebsocketsUpstreamChannel:
    """
    Open a realtime session connection.

    Raises:
        UpstreamHandshakeError: if the connection cannot be opened
    """
    url = url or settings.OPENAI_REALTIME_URL
    model = model or settings.OPENAI_REALTIME_MODEL
    api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
    try:
        connection = await websockets.connect(
            f"{url}?model={model}",
            additional_headers={
                "Authorization": f"Bearer {api_key}",
                "OpenAI-Beta": "realtime=v1",
            },
            max_size=None,
        )
    except (OSError, InvalidHandshake) as e:
        raise UpstreamHandshakeError(f"could not connect to {url}: {e}") from e
    logger.info(f"[UpstreamChannel] Connected to {url} ({model})")
    return WebsocketsUpstreamChannel(connection)
