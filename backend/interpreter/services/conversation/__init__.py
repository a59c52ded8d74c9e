"""
Conversation module.

Collaborators that consume finalized message pairs:
- store: SQL persistence of conversations and messages
- intents: medical intent extraction and de-duplication
- summary: end-of-conversation summary
- webhook: conversation_completed notification
"""
from .intents import IntentExtractor, deduplicate_intents, intent_key
from .store import SqlConversationStore
from .summary import ConversationSummarizer
from .webhook import WebhookNotifier, build_webhook_payload

__all__ = [
    "IntentExtractor",
    "deduplicate_intents",
    "intent_key",
    "SqlConversationStore",
    "ConversationSummarizer",
    "WebhookNotifier",
    "build_webhook_payload",
]
