"""
Upstream Bridge - one session's link to the realtime provider

Responsibilities:
1. Open the upstream channel and run the handshake exactly once:
   open → session.created → session.update → session.updated
2. Translate orchestrator intents (append audio, commit, request
   translation, stop) into provider wire messages
3. Read inbound events in order and hand each to the matching
   UpstreamEventHandler coroutine
4. Report an unexpected close as a reconnect signal instead of failing

Usage:
    bridge = UpstreamBridge(connect_upstream, handler=orchestrator, label=session.id)
    await bridge.connect(build_session_config(language_config))
    await bridge.append_audio(chunk)
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from interpreter.config.settings import settings
from interpreter.services.exceptions import (
    UpstreamClosedError,
    UpstreamError,
    UpstreamHandshakeError,
)
from interpreter.services.protocols import UpstreamChannel, UpstreamConnector, UpstreamEventHandler
from interpreter.services.upstream import messages

logger = logging.getLogger(__name__)

# Provider error codes that are expected in normal operation
BENIGN_ERROR_CODES = frozenset({
    "input_audio_buffer_commit_empty",
    "response_cancel_not_active",
})


class UpstreamBridge:
    """Wraps one upstream channel for the lifetime of one connection."""

    _EVENT_HANDLERS = {
        "conversation.item.created": "_item_created",
        "input_audio_buffer.speech_started": "_speech_started",
        "input_audio_buffer.speech_stopped": "_speech_stopped",
        "conversation.item.input_audio_transcription.delta": "_transcription_delta",
        "conversation.item.input_audio_transcription.completed": "_transcription_completed",
        "conversation.item.input_audio_transcription.failed": "_transcription_failed",
        "response.created": "_response_created",
        "response.audio_transcript.delta": "_translation_delta",
        "response.audio_transcript.done": "_translation_done",
        "response.audio.delta": "_audio_delta",
        "response.audio.done": "_audio_done",
        "response.done": "_response_done",
        "error": "_error",
    }

    def __init__(
        self,
        connector: UpstreamConnector,
        handler: UpstreamEventHandler,
        label: str = "",
        handshake_timeout: Optional[float] = None,
    ):
        self._connector = connector
        self._handler = handler
        self.label = label
        self.handshake_timeout = handshake_timeout or settings.UPSTREAM_HANDSHAKE_TIMEOUT_SEC

        self._channel: Optional[UpstreamChannel] = None
        self._reader: Optional[asyncio.Task] = None
        self._negotiated = False
        self._closing = False
        self.upstream_session_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._negotiated and not self._closing

    # === Handshake ===

    async def connect(self, session_config: Dict[str, Any]):
        """
        Open the channel and negotiate the provider session.

        Raises:
            UpstreamHandshakeError: connection, timeout or provider error
        """
        if self._negotiated or self._channel is not None:
            raise UpstreamHandshakeError("handshake already performed on this bridge")

        try:
            self._channel = await asyncio.wait_for(self._connector(), self.handshake_timeout)
            created = await self._expect("session.created")
            self.upstream_session_id = (created.get("session") or {}).get("id")
            await self._channel.send(messages.session_update(session_config))
            await self._expect("session.updated")
        except asyncio.TimeoutError as e:
            await self._abort()
            raise UpstreamHandshakeError(f"handshake timed out after {self.handshake_timeout}s") from e
        except UpstreamHandshakeError:
            await self._abort()
            raise
        except UpstreamError as e:
            await self._abort()
            raise UpstreamHandshakeError(str(e)) from e

        if self._closing:
            # closed by the owner while the handshake was in flight
            await self._abort()
            raise UpstreamHandshakeError("bridge closed during handshake")

        self._negotiated = True
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"[UpstreamBridge] {self.label}: session negotiated ({self.upstream_session_id})")

    async def _expect(self, event_type: str) -> Dict[str, Any]:
        while True:
            event = await asyncio.wait_for(self._channel.receive(), self.handshake_timeout)
            kind = event.get("type")
            if kind == event_type:
                return event
            if kind == "error":
                error = event.get("error") or {}
                raise UpstreamHandshakeError(error.get("message") or "provider error during handshake")
            logger.debug(f"[UpstreamBridge] {self.label}: ignoring {kind} while waiting for {event_type}")

    async def _abort(self):
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    # === Outbound intents ===

    async def _send(self, message: Dict[str, Any]):
        if not self.is_open:
            raise UpstreamClosedError("upstream channel is not open")
        await self._channel.send(message)

    async def append_audio(self, chunk: bytes):
        await self._send(messages.append_audio(chunk))

    async def commit(self):
        await self._send(messages.commit_audio())

    async def request_translation(self, instructions: str, item_id: Optional[str] = None):
        if item_id:
            message = messages.response_create(
                instructions, {"item_id": item_id}, event_id=messages.translation_event_id(item_id)
            )
        else:
            message = messages.response_create(instructions)
        await self._send(message)

    async def update_session(self, session_config: Dict[str, Any]):
        await self._send(messages.session_update(session_config))

    async def close(self):
        """Stop reading and close the channel. No reconnect signal is raised."""
        if self._closing:
            return
        self._closing = True
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await self._abort()
        logger.info(f"[UpstreamBridge] {self.label}: closed")

    async def stop(self):
        """Cancel any in-flight response, then close."""
        if self.is_open:
            try:
                await self._send(messages.response_cancel())
            except UpstreamError as e:
                logger.debug(f"[UpstreamBridge] {self.label}: response.cancel not delivered ({e})")
        await self.close()

    # === Inbound demultiplexing ===

    async def _read_loop(self):
        while not self._closing:
            try:
                event = await self._channel.receive()
            except UpstreamClosedError as e:
                if not self._closing:
                    logger.warning(f"[UpstreamBridge] {self.label}: upstream closed unexpectedly ({e})")
                    self._closing = True
                    self._channel = None
                    await self._handler.on_upstream_closed()
                return
            await self.dispatch(event)

    async def dispatch(self, event: Dict[str, Any]):
        kind = event.get("type")
        method = self._EVENT_HANDLERS.get(kind)
        if method is None:
            logger.debug(f"[UpstreamBridge] {self.label}: unhandled event {kind}")
            return
        try:
            await getattr(self, method)(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[UpstreamBridge] {self.label}: handler for {kind} failed: {e}", exc_info=True)

    async def _item_created(self, event):
        item = event.get("item") or {}
        await self._handler.on_item_created(item.get("id"), item.get("role"))

    async def _speech_started(self, event):
        await self._handler.on_speech_started(event.get("item_id"))

    async def _speech_stopped(self, event):
        await self._handler.on_speech_stopped(event.get("item_id"))

    async def _transcription_delta(self, event):
        await self._handler.on_transcription_delta(event.get("item_id"), event.get("delta") or "")

    async def _transcription_completed(self, event):
        await self._handler.on_transcription_completed(event.get("item_id"), event.get("transcript") or "")

    async def _transcription_failed(self, event):
        await self._handler.on_transcription_failed(event.get("item_id"), event.get("error") or {})

    async def _response_created(self, event):
        response = event.get("response") or {}
        metadata = response.get("metadata") or {}
        await self._handler.on_response_created(response.get("id"), metadata.get("item_id"))

    async def _translation_delta(self, event):
        await self._handler.on_translation_delta(
            event.get("response_id"), event.get("item_id"), event.get("delta") or ""
        )

    async def _translation_done(self, event):
        await self._handler.on_translation_done(
            event.get("response_id"), event.get("item_id"), event.get("transcript") or ""
        )

    async def _audio_delta(self, event):
        await self._handler.on_audio_delta(
            event.get("response_id"), event.get("item_id"), event.get("delta") or ""
        )

    async def _audio_done(self, event):
        await self._handler.on_audio_done(event.get("response_id"), event.get("item_id"))

    async def _response_done(self, event):
        await self._handler.on_response_done((event.get("response") or {}).get("id"))

    async def _error(self, event):
        error = event.get("error") or {}
        if error.get("code") in BENIGN_ERROR_CODES:
            logger.debug(f"[UpstreamBridge] {self.label}: ignoring provider error {error.get('code')}")
            return
        await self._handler.on_upstream_error(error)
