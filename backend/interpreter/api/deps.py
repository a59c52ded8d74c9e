"""
Shared FastAPI dependencies.

Overridden in tests through `app.dependency_overrides`.
"""
from interpreter.models.database import get_db
from interpreter.services.conversation import SqlConversationStore
from interpreter.services.session.registry import SessionRegistry
from interpreter.services.session.registry import get_session_registry as _get_session_registry

_store = SqlConversationStore()


def get_conversation_store() -> SqlConversationStore:
    return _store


def get_session_registry() -> SessionRegistry:
    return _get_session_registry()


__all__ = ["get_db", "get_conversation_store", "get_session_registry"]
