"""
Session Dependencies

Everything a SessionOrchestrator talks to besides its two channels,
bundled so tests can swap any collaborator for a fake.
"""
from dataclasses import dataclass
from typing import Optional

from interpreter.config.settings import settings
from interpreter.services.protocols import (
    CompletionNotifier,
    ConversationStore,
    IntentSource,
    PresenceTracker,
    SpeakerClassifier,
    Summarizer,
    UpstreamConnector,
)


@dataclass
class SessionDependencies:
    connector: UpstreamConnector
    classifier: SpeakerClassifier
    store: ConversationStore
    intents: IntentSource
    summarizer: Summarizer
    notifier: Optional[CompletionNotifier] = None
    presence: Optional[PresenceTracker] = None
    inactivity_timeout: float = settings.INACTIVITY_TIMEOUT_MINUTES * 60


def build_dependencies() -> SessionDependencies:
    """Production wiring: realtime provider, chat model, SQL store, Redis presence."""
    from interpreter.services.conversation import (
        ConversationSummarizer,
        IntentExtractor,
        SqlConversationStore,
        WebhookNotifier,
    )
    from interpreter.services.language import LLMLanguageDetector, SpeakerLanguageClassifier
    from interpreter.services.llm import get_llm_client
    from interpreter.services.presence import SessionPresence
    from interpreter.services.upstream.channel import connect_upstream

    client = get_llm_client()
    return SessionDependencies(
        connector=connect_upstream,
        classifier=SpeakerLanguageClassifier(LLMLanguageDetector(client)),
        store=SqlConversationStore(),
        intents=IntentExtractor(client),
        summarizer=ConversationSummarizer(client),
        notifier=WebhookNotifier(),
        presence=SessionPresence(),
        inactivity_timeout=settings.INACTIVITY_TIMEOUT_MINUTES * 60,
    )
