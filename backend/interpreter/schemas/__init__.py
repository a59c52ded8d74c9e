"""
Schemas Package

Pydantic models for API and WebSocket events.
"""

from interpreter.schemas.websocket_events import (
    LanguageConfig,
    ClientEventBase,
    LanguageConfigEvent,
    HeartbeatEvent,
    PongEvent,
    PingEvent,
    StopEvent,
    ClientEvent,
    parse_client_event,
    SessionReadyData,
    TranscriptData,
    TranslationData,
    EventData,
    ConversationStoppedData,
    ConversationResumedData,
    ConversationTimeoutData,
    IntentsExtractedData,
    ErrorData,
    server_message,
)
from interpreter.schemas.conversation import (
    ResumeConversationRequest,
    ControlResponse,
    ConversationListResponse,
    ConversationIntentsResponse,
)

__all__ = [
    "LanguageConfig",
    "ClientEventBase",
    "LanguageConfigEvent",
    "HeartbeatEvent",
    "PongEvent",
    "PingEvent",
    "StopEvent",
    "ClientEvent",
    "parse_client_event",
    "SessionReadyData",
    "TranscriptData",
    "TranslationData",
    "EventData",
    "ConversationStoppedData",
    "ConversationResumedData",
    "ConversationTimeoutData",
    "IntentsExtractedData",
    "ErrorData",
    "server_message",
    "ResumeConversationRequest",
    "ControlResponse",
    "ConversationListResponse",
    "ConversationIntentsResponse",
]
