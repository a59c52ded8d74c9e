"""
Conversation API Schemas

Request/response models for the conversation control surface.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ResumeConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(None, alias="conversationId")


class ControlResponse(BaseModel):
    success: bool = True
    message: str


class ConversationListResponse(BaseModel):
    success: bool = True
    conversations: List[Dict[str, Any]]
    total: int


class ConversationIntentsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    conversation_id: str = Field(alias="conversationId")
    session_id: str = Field(alias="sessionId")
    total_intents: int = Field(alias="totalIntents")
    original_intent_count: int = Field(alias="originalIntentCount")
    intents_by_type: Dict[str, List[Dict[str, Any]]] = Field(alias="intentsByType")
    intents: List[Dict[str, Any]]
