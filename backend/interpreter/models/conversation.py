"""
Conversation Models - Interpretation session history

A conversation is the persisted record of one interpretation session:
every finalized (original, translation) pair spoken by the doctor or the
patient, the intents extracted from it, and the summary written on stop.
"""
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum
import uuid

from .database import Base


class SpeakerRole(str, Enum):
    """Who spoke an utterance."""
    DOCTOR = "doctor"
    PATIENT = "patient"

    @property
    def counterpart(self) -> "SpeakerRole":
        return SpeakerRole.PATIENT if self is SpeakerRole.DOCTOR else SpeakerRole.DOCTOR


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Conversation(Base):
    """Conversation record for one interpretation session"""
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Realtime session that created (or last resumed) the conversation
    session_id = Column(String(64), nullable=False, index=True)

    # Optional participant identifiers
    patient_name = Column(String(255), nullable=True)
    doctor_name = Column(String(255), nullable=True)

    # Status
    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value, index=True)
    summary = Column(Text, nullable=True)
    actions = Column(JSON, nullable=False, default=list)

    # Timing
    start_time = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    total_message_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    messages = relationship(
        "ConversationMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.timestamp",
        lazy="selectin",
    )

    def to_dict(self, include_messages: bool = True):
        data = {
            "id": self.id,
            "sessionId": self.session_id,
            "patientName": self.patient_name,
            "doctorName": self.doctor_name,
            "status": self.status,
            "summary": self.summary,
            "actions": list(self.actions or []),
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "totalMessageCount": self.total_message_count,
        }
        if include_messages:
            data["messages"] = [message.to_dict() for message in self.messages]
        return data

    def __repr__(self):
        return f"<Conversation {self.id} ({self.status}) for session {self.session_id}>"


class ConversationMessage(Base):
    """One finalized utterance and its translation"""
    __tablename__ = "conversation_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Content
    speaker = Column(String(20), nullable=False)
    original_text = Column(Text, nullable=True)
    translated_text = Column(Text, nullable=True)

    # Upstream utterance id the transcript and translation were correlated by
    message_id = Column(String(64), nullable=True, index=True)

    # Extracted intents (list of dicts)
    intents = Column(JSON, nullable=False, default=list)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")

    def to_dict(self):
        return {
            "id": self.id,
            "speaker": self.speaker,
            "originalText": self.original_text,
            "translatedText": self.translated_text,
            "messageId": self.message_id,
            "intents": list(self.intents or []),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
