"""
WebSocket Router - Live Interpretation Endpoint

This is the thin routing layer that delegates to SessionOrchestrator
for all session management.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket

from interpreter.api.deps import get_session_registry
from interpreter.services.connection import WebSocketClientChannel
from interpreter.services.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket, registry: SessionRegistry = Depends(get_session_registry)):
    """
    WebSocket endpoint for one interpretation session.

    Binary Messages:
        - Aggregated PCM16 audio chunks (16 kHz, mono)

    Message Types (JSON):
        - language_config: Which language the doctor and patient speak
        - heartbeat: Keep the session alive (answered with heartbeat_ack)
        - pong: Answer to a server ping
        - ping: Latency check (answered with pong)
        - stop: End the conversation

    The session id is announced in `session_ready` once the upstream
    provider session is negotiated.
    """
    await websocket.accept()
    session_id = str(uuid.uuid4())
    orchestrator = registry.create(WebSocketClientChannel(websocket, label=session_id), session_id=session_id)
    logger.info(f"[WebSocket] New connection, session {session_id}")
    await orchestrator.run()
