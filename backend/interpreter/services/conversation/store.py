"""
Conversation Store - SQL persistence for interpretation sessions

Implements the ConversationStore protocol on the async SQLAlchemy models.
Every method opens its own short-lived session from the session factory.
Database errors are raised as PersistenceError.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError

from interpreter.models import database
from interpreter.models.conversation import Conversation, ConversationMessage, ConversationStatus
from interpreter.services.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class SqlConversationStore:
    """Conversations and their messages in the relational database."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        # resolved at call time so a rebound database.AsyncSessionLocal is honoured
        factory = self._session_factory or database.AsyncSessionLocal
        return factory()

    async def create(self, session_id: str) -> str:
        try:
            async with self._session() as db:
                conversation = Conversation(session_id=session_id, status=ConversationStatus.ACTIVE.value)
                db.add(conversation)
                await db.commit()
                logger.info(f"[ConversationStore] Created conversation {conversation.id} for session {session_id}")
                return conversation.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not create conversation: {e}") from e

    async def resume(self, conversation_id: str, session_id: str) -> bool:
        """Reattach `conversation_id` to `session_id`. False if it does not exist."""
        try:
            async with self._session() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    return False
                conversation.session_id = session_id
                conversation.status = ConversationStatus.ACTIVE.value
                conversation.end_time = None
                await db.commit()
                logger.info(f"[ConversationStore] Resumed conversation {conversation_id} on session {session_id}")
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not resume conversation {conversation_id}: {e}") from e

    async def add_message(
        self,
        conversation_id: str,
        speaker: str,
        original_text: str,
        translated_text: str,
        message_id: Optional[str] = None,
        intents: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        try:
            async with self._session() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    raise PersistenceError(f"conversation {conversation_id} not found")
                message = ConversationMessage(
                    conversation_id=conversation_id,
                    speaker=speaker,
                    original_text=original_text,
                    translated_text=translated_text,
                    message_id=message_id,
                    intents=list(intents or []),
                )
                db.add(message)
                await db.flush()
                conversation.total_message_count = await db.scalar(
                    select(func.count(ConversationMessage.id)).where(
                        ConversationMessage.conversation_id == conversation_id
                    )
                )
                await db.commit()
                return message.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not save message: {e}") from e

    async def recent_messages(self, conversation_id: str, limit: int) -> List[Dict[str, Any]]:
        """Last `limit` messages, oldest first."""
        try:
            async with self._session() as db:
                result = await db.execute(
                    select(ConversationMessage)
                    .where(ConversationMessage.conversation_id == conversation_id)
                    .order_by(desc(ConversationMessage.timestamp))
                    .limit(limit)
                )
                messages = result.scalars().all()
                return [message.to_dict() for message in reversed(messages)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not load messages: {e}") from e

    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        try:
            async with self._session() as db:
                result = await db.execute(
                    select(ConversationMessage)
                    .where(ConversationMessage.conversation_id == conversation_id)
                    .order_by(ConversationMessage.timestamp)
                )
                return [message.to_dict() for message in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not load messages: {e}") from e

    async def complete(self, conversation_id: str, summary: Optional[str]) -> Optional[Dict[str, Any]]:
        """Mark the conversation completed. Returns the stored record, or None if missing."""
        try:
            async with self._session() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    return None
                conversation.status = ConversationStatus.COMPLETED.value
                conversation.end_time = datetime.utcnow()
                if summary is not None:
                    conversation.summary = summary
                await db.commit()
                await db.refresh(conversation)
                logger.info(f"[ConversationStore] Completed conversation {conversation_id}")
                return conversation.to_dict()
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not complete conversation {conversation_id}: {e}") from e

    async def set_actions(self, conversation_id: str, actions: List[str]) -> None:
        try:
            async with self._session() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    return
                conversation.actions = list(actions)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not store actions: {e}") from e

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session() as db:
                conversation = await db.get(Conversation, conversation_id)
                return conversation.to_dict() if conversation else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not load conversation {conversation_id}: {e}") from e

    async def list_recent(self, limit: int) -> List[Dict[str, Any]]:
        """Newest conversations first."""
        try:
            async with self._session() as db:
                result = await db.execute(
                    select(Conversation).order_by(desc(Conversation.start_time)).limit(limit)
                )
                return [conversation.to_dict() for conversation in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not list conversations: {e}") from e
