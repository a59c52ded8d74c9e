"""
WebSocket Event Schemas

Pydantic models for type-safe WebSocket event handling between the browser
client and the interpreter backend.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from interpreter.config.constants import (
    DEFAULT_DOCTOR_LANGUAGE,
    DEFAULT_PATIENT_LANGUAGE,
)
from interpreter.models.conversation import SpeakerRole


# =============================================================================
# Language Configuration
# =============================================================================

class LanguageConfig(BaseModel):
    """
    Which language each role speaks.

    Wire format: {isDoctorSpanish, doctorLanguage, patientLanguage}.
    Sending only isDoctorSpanish swaps the default English/Spanish pair.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_doctor_spanish: bool = Field(False, alias="isDoctorSpanish")
    doctor_language: str = Field(DEFAULT_DOCTOR_LANGUAGE, alias="doctorLanguage")
    patient_language: str = Field(DEFAULT_PATIENT_LANGUAGE, alias="patientLanguage")

    @model_validator(mode="before")
    @classmethod
    def _apply_flag(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        explicit = {"doctorLanguage", "doctor_language", "patientLanguage", "patient_language"}
        flag = data.get("isDoctorSpanish", data.get("is_doctor_spanish"))
        if flag and not explicit.intersection(data):
            data["doctorLanguage"] = DEFAULT_PATIENT_LANGUAGE
            data["patientLanguage"] = DEFAULT_DOCTOR_LANGUAGE
        for key in explicit.intersection(data):
            if isinstance(data[key], str):
                data[key] = data[key].strip().lower()
        return data

    @model_validator(mode="after")
    def _check_distinct(self) -> "LanguageConfig":
        if self.doctor_language == self.patient_language:
            raise ValueError("doctor and patient must speak different languages")
        return self

    @property
    def languages(self) -> tuple[str, str]:
        return (self.doctor_language, self.patient_language)

    def language_for(self, role: SpeakerRole) -> str:
        return self.doctor_language if role is SpeakerRole.DOCTOR else self.patient_language

    def target_language_for(self, role: SpeakerRole) -> str:
        """Language an utterance spoken by `role` is translated into."""
        return self.language_for(role.counterpart)

    def role_for_language(self, language: Optional[str]) -> Optional[SpeakerRole]:
        if not language:
            return None
        language = language.strip().lower()
        if language == self.doctor_language:
            return SpeakerRole.DOCTOR
        if language == self.patient_language:
            return SpeakerRole.PATIENT
        return None


# =============================================================================
# Client -> Server Events
# =============================================================================

class ClientEventBase(BaseModel):
    """Base model for all JSON control messages sent by the client."""
    type: str


class LanguageConfigEvent(ClientEventBase):
    """Client declares which language each role speaks."""
    type: Literal["language_config"] = "language_config"
    data: LanguageConfig


class HeartbeatEvent(ClientEventBase):
    """Client heartbeat to maintain the session."""
    type: Literal["heartbeat"] = "heartbeat"


class PongEvent(ClientEventBase):
    """Answer to a server ping."""
    type: Literal["pong"] = "pong"


class PingEvent(ClientEventBase):
    """Simple ping for latency check."""
    type: Literal["ping"] = "ping"


class StopEvent(ClientEventBase):
    """Client asks to stop the conversation."""
    type: Literal["stop"] = "stop"


ClientEvent = Annotated[
    Union[LanguageConfigEvent, HeartbeatEvent, PongEvent, PingEvent, StopEvent],
    Field(discriminator="type"),
]

CLIENT_EVENT_TYPES = frozenset({"language_config", "heartbeat", "pong", "ping", "stop"})

_client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_client_event(message: Dict[str, Any]) -> ClientEvent:
    """
    Validate one JSON control message.

    Raises:
        ValidationError: unknown `type` or malformed `data`
    """
    return _client_event_adapter.validate_python(message)


# =============================================================================
# Server -> Client Payloads
# =============================================================================

class ServerPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionReadyData(ServerPayload):
    session_id: str = Field(alias="sessionId")
    conversation_id: Optional[str] = Field(None, alias="conversationId")


class TranscriptData(ServerPayload):
    id: Optional[str]
    text: str
    is_user: bool = True
    finished: bool
    role: str


class TranslationData(ServerPayload):
    id: Optional[str]
    text: str
    finished: bool


class EventData(ServerPayload):
    event: Literal[
        "speech_started",
        "speech_stopped",
        "audio_playing",
        "audio_stopped",
        "session_ready",
        "reconnecting",
    ]


class ConversationStoppedData(ServerPayload):
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    summary: Optional[str] = None


class ConversationResumedData(ServerPayload):
    conversation_id: str = Field(alias="conversationId")


class ConversationTimeoutData(ServerPayload):
    message: str


class IntentsExtractedData(ServerPayload):
    message_id: Optional[str] = Field(None, alias="messageId")
    intents: List[Dict[str, Any]]


class ErrorData(ServerPayload):
    message: str


def server_message(message_type: str, data: Any = None) -> Dict[str, Any]:
    """Build a `{type, data}` message for the client channel."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    message: Dict[str, Any] = {"type": message_type}
    if data is not None:
        message["data"] = data
    return message
