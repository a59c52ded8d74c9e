"""
Interpreter Client - Python client for the `/ws` interpretation endpoint.

Demonstrates:
- Language configuration and session readiness
- Streaming microphone-style float samples as aggregated PCM16 chunks
- Ordered playback of synthesized audio
- Heartbeats and server ping answers

Usage:
    client = InterpreterClient("ws://localhost:3001/ws", sink=WavFileSink("reply.wav"))
    client.on("translation", lambda data: print(data["text"]))

    await client.connect()
    await client.send_samples(samples)
    await client.stop()
    await client.close()
"""
import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import websockets

from interpreter.client.aggregator import AudioBufferAggregator
from interpreter.client.encoder import AudioFrameEncoder
from interpreter.client.playback import AudioSink, PlaybackSequencer
from interpreter.config.settings import settings

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class InterpreterClient:
    """
    WebSocket client for one interpretation session.

    Callbacks registered with `on(type, handler)` receive the `data` of
    every server message of that type.
    """

    def __init__(
        self,
        url: str = "ws://localhost:3001/ws",
        language_config: Optional[Dict[str, Any]] = None,
        sink: Optional[AudioSink] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.url = url
        self.language_config = language_config or {"isDoctorSpanish": False}
        self.heartbeat_interval = heartbeat_interval or settings.HEARTBEAT_INTERVAL_SEC

        self.encoder = AudioFrameEncoder()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self.aggregator = AudioBufferAggregator(on_chunk=self._outbox.put_nowait)
        self.playback = PlaybackSequencer(sink, on_event=self._on_playback_event) if sink else None

        self.session_id: Optional[str] = None
        self.conversation_id: Optional[str] = None
        self.summary: Optional[str] = None
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._ready = asyncio.Event()
        self._stopped = asyncio.Event()
        self._ws = None
        self._tasks: List[asyncio.Task] = []

    def on(self, message_type: str, handler: Handler):
        self._handlers[message_type].append(handler)

    async def connect(self, ready_timeout: float = 15.0):
        """Connect, send the language configuration and wait for `session_ready`."""
        self._ws = await websockets.connect(self.url, max_size=None)
        await self._send_json({"type": "language_config", "data": self.language_config})
        self._tasks = [
            asyncio.create_task(self._receive_loop()),
            asyncio.create_task(self._send_loop()),
            asyncio.create_task(self._heartbeat_loop()),
        ]
        await asyncio.wait_for(self._ready.wait(), ready_timeout)
        logger.info(f"[Client] Session {self.session_id} ready (conversation {self.conversation_id})")

    async def send_samples(self, samples):
        """Encode float samples and feed them through the aggregator."""
        for frame in self.encoder.iter_frames(samples):
            self.aggregator.feed(frame)
        # let the sender drain between batches
        await asyncio.sleep(0)

    async def send_pcm(self, chunk: bytes):
        """Send an already aggregated PCM16 chunk."""
        await self._outbox.put(chunk)

    async def stop(self, timeout: float = 30.0) -> Optional[str]:
        """
        Ask the server to stop and wait for `conversation_stopped`. Returns the summary.

        Queued audio is sent first; `timeout` bounds the whole call.
        """
        self.aggregator.flush()
        if self._stopped.is_set():
            self._discard_outbox()
            return self.summary

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            await asyncio.wait_for(self._outbox.join(), timeout)
            await self._send_json({"type": "stop"})
            await asyncio.wait_for(self._stopped.wait(), max(deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            logger.warning("[Client] No conversation_stopped before timeout")
        except websockets.ConnectionClosed:
            logger.warning("[Client] Connection closed before the stop request was sent")
        return self.summary

    async def close(self):
        self.aggregator.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self.playback is not None:
            await self.playback.wait_idle()
            await self.playback.close()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _send_json(self, message: Dict[str, Any]):
        await self._ws.send(json.dumps(message))

    async def _send_loop(self):
        while True:
            chunk = await self._outbox.get()
            try:
                await self._ws.send(chunk)
            except websockets.ConnectionClosed:
                logger.warning("[Client] Connection closed while sending audio")
                self._discard_outbox()
                return
            finally:
                self._outbox.task_done()

    def _discard_outbox(self):
        dropped = 0
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._outbox.task_done()
            dropped += 1
        if dropped:
            logger.warning(f"[Client] Dropped {dropped} unsent audio chunk(s)")

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._send_json({"type": "heartbeat"})

    async def _receive_loop(self):
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("[Client] Ignoring non-JSON message")
                    continue
                await self._handle_message(message)
        except websockets.ConnectionClosed:
            logger.info("[Client] Connection closed by server")
        finally:
            self._stopped.set()

    async def _handle_message(self, message: Dict[str, Any]):
        msg_type = message.get("type")
        data = message.get("data")

        if msg_type == "ping":
            await self._send_json({"type": "pong"})
        elif msg_type == "session_ready":
            self.session_id = data.get("sessionId")
            self.conversation_id = data.get("conversationId")
            self._ready.set()
        elif msg_type == "conversation_resumed":
            self.conversation_id = data.get("conversationId")
        elif msg_type == "conversation_stopped":
            self.summary = data.get("summary")
            self._stopped.set()
        elif msg_type == "audio" and self.playback is not None:
            self.playback.enqueue(data)
        elif msg_type == "error":
            logger.warning(f"[Client] Server error: {data.get('message')}")

        for handler in self._handlers.get(msg_type, []):
            try:
                handler(data)
            except Exception as e:
                logger.error(f"[Client] Handler for {msg_type} failed: {e}")

    def _on_playback_event(self, event: str):
        for handler in self._handlers.get("event", []):
            handler({"event": event})
