"""Pydantic schemas for conversations, their messages and participants."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.constants.channels import ContentType, MessageStatus


class ParticipantRead(BaseModel):
    id: UUID
    participant_type: str
    external_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True, "populate_by_name": True}


class ConversationRead(BaseModel):
    """Conversation as returned by the inbox API."""

    id: UUID
    workspace_id: str
    channel_id: UUID
    status: str
    assigned_agent_id: Optional[str] = None
    is_handled_by_bot: bool
    message_count: int
    last_message_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    contact_key: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="extra")
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class MessageRead(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_type: str
    sender_name: Optional[str] = None
    content: str
    content_type: str
    rich_content: Optional[dict[str, Any]] = None
    attachments: Optional[list[dict[str, Any]]] = None
    is_ai_generated: bool
    external_message_id: Optional[str] = None
    status: str
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="message_metadata")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class ConversationWithMessages(ConversationRead):
    messages: list[MessageRead] = Field(default_factory=list)
    participants: list[ParticipantRead] = Field(default_factory=list)


class AssignRequest(BaseModel):
    """Assign to a human agent, or hand back to the bot with agent_id null."""

    agent_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    """Outbound reply from an agent or the bot."""

    content: str = Field(..., min_length=1)
    content_type: ContentType = ContentType.TEXT
    rich_content: Optional[dict[str, Any]] = None
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    is_ai_generated: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageStatusUpdate(BaseModel):
    status: MessageStatus
