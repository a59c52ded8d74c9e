"""
Conversations API - Control surface for live and past conversations

Implements:
- Health check (database reachability, live sessions)
- Conversation history listing
- Intent aggregation across a conversation's messages
- Out-of-band stop and resume of a live session's conversation
"""
import logging
from collections import defaultdict
from datetime import datetime, UTC

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from interpreter.api.deps import get_conversation_store, get_db, get_session_registry
from interpreter.config.constants import CONVERSATION_LIST_LIMIT
from interpreter.schemas.conversation import (
    ControlResponse,
    ConversationIntentsResponse,
    ConversationListResponse,
    ResumeConversationRequest,
)
from interpreter.services.conversation import deduplicate_intents
from interpreter.services.exceptions import PersistenceError
from interpreter.services.protocols import ConversationStore
from interpreter.services.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Health check including database reachability."""
    try:
        await db.execute(text("SELECT 1"))
        connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"[API] Database health check failed: {e}")
        connected = False

    return {
        "status": "healthy" if connected else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "database": {"connected": connected},
        "activeSessions": len(registry),
    }


@router.get("/connections")
async def connections(registry: SessionRegistry = Depends(get_session_registry)):
    return {"activeConnections": len(registry)}


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(store: ConversationStore = Depends(get_conversation_store)):
    """Most recent conversations first."""
    try:
        conversations = await store.list_recent(CONVERSATION_LIST_LIMIT)
    except PersistenceError as e:
        logger.error(f"[API] Error fetching conversations: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch conversations")
    return ConversationListResponse(conversations=conversations, total=len(conversations))


@router.get(
    "/conversations/{conversation_id}/intents",
    response_model=ConversationIntentsResponse,
    response_model_by_alias=True,
)
async def conversation_intents(
    conversation_id: str,
    store: ConversationStore = Depends(get_conversation_store),
):
    """
    All intents of a conversation, de-duplicated across messages and
    grouped by intent type.
    """
    try:
        conversation = await store.get(conversation_id)
    except PersistenceError as e:
        logger.error(f"[API] Error fetching intents of {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch conversation intents")
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    all_intents = [
        intent
        for message in conversation.get("messages", [])
        for intent in message.get("intents") or []
    ]
    intents = deduplicate_intents(all_intents)

    by_type = defaultdict(list)
    for intent in intents:
        by_type[intent.get("type", "unknown")].append(intent)

    return ConversationIntentsResponse(
        conversation_id=conversation["id"],
        session_id=conversation["sessionId"],
        total_intents=len(intents),
        original_intent_count=len(all_intents),
        intents_by_type=dict(by_type),
        intents=intents,
    )


@router.post("/conversations/{session_id}/stop", response_model=ControlResponse)
async def stop_conversation(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Stop the conversation of a live session.

    Idempotent: stopping an unknown or already stopped session succeeds.
    """
    orchestrator = registry.lookup(session_id)
    if orchestrator is None:
        logger.info(f"[API] Stop for {session_id}: session not live")
        return ControlResponse(message="Conversation already stopped")

    stopped = await orchestrator.stop("api_stop")
    return ControlResponse(message="Conversation stopped" if stopped else "Conversation already stopped")


@router.post("/conversations/{session_id}/resume", response_model=ControlResponse)
async def resume_conversation(
    session_id: str,
    req: ResumeConversationRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Reattach a live session to a prior conversation."""
    orchestrator = registry.lookup(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Session not found")

    try:
        conversation_id = await orchestrator.resume(req.conversation_id)
    except PersistenceError as e:
        logger.error(f"[API] Error resuming conversation on {session_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to resume conversation")

    logger.info(f"[API] Session {session_id} resumed conversation {conversation_id}")
    return ControlResponse(message="Conversation resumed")
