"""
Database Models Package

This module exports all SQLAlchemy models for the medical interpreter.

Tables:
1. conversations - One record per interpretation session
2. conversation_messages - Finalized utterance/translation pairs with intents
"""

from .database import (
    engine,
    AsyncSessionLocal,
    Base,
    init_db,
    reset_db,
    get_db,
)

from .conversation import (
    Conversation,
    ConversationMessage,
    ConversationStatus,
    SpeakerRole,
)

__all__ = [
    # Database utilities
    "engine",
    "AsyncSessionLocal",
    "Base",
    "init_db",
    "reset_db",
    "get_db",

    # Models
    "Conversation",
    "ConversationMessage",
    "ConversationStatus",
    "SpeakerRole",
]
