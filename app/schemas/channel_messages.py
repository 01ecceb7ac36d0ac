"""
Canonical message contracts shared by every channel connector.

Inbound traffic is normalized into IncomingMessage; outbound replies are
described by OutgoingMessage. Connectors must honor these shapes on both
sides of their boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.constants.channels import ChannelType, ContentType, FileType


class Attachment(BaseModel):
    """Inbound attachment in canonical form."""

    file_name: str
    file_type: FileType = FileType.OTHER
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    url: str
    thumbnail_url: Optional[str] = None


class OutgoingAttachment(BaseModel):
    file_name: str
    url: str
    mime_type: Optional[str] = None


class IncomingMessage(BaseModel):
    """Normalized inbound message (connector → core)."""

    external_id: Optional[str] = None  # provider message id; idempotency key
    channel_type: ChannelType
    channel_id: UUID
    workspace_id: str
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_avatar: Optional[str] = None
    content: str = ""
    content_type: ContentType = ContentType.TEXT
    rich_content: Optional[dict[str, Any]] = None
    attachments: list[Attachment] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OutgoingMessage(BaseModel):
    """Normalized outbound message (core → connector)."""

    conversation_id: UUID
    content: str = Field(..., min_length=1)
    content_type: ContentType = ContentType.TEXT
    rich_content: Optional[dict[str, Any]] = None
    attachments: list[OutgoingAttachment] = Field(default_factory=list)
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    is_ai_generated: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Filled in by ChannelService from the conversation before dispatch
    recipient: Optional[str] = None
    recipient_name: Optional[str] = None


class ConfigValidationResult(BaseModel):
    valid: bool
    errors: Optional[list[str]] = None


class ChannelConnectionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    external_channel_id: Optional[str] = None
    webhook_url: Optional[str] = None


class SendMessageResult(BaseModel):
    """Result of an outbound delivery attempt."""

    success: bool
    external_message_id: Optional[str] = None
    error: Optional[str] = None
    delivered_at: Optional[datetime] = None
    retryable: bool = False


class ChannelQuota(BaseModel):
    used: int
    limit: int
    resets_at: Optional[datetime] = None


class ChannelStatusReport(BaseModel):
    connected: bool
    last_sync: Optional[datetime] = None
    error: Optional[str] = None
    quota: Optional[ChannelQuota] = None


class WebhookPayload(BaseModel):
    """Inbound webhook event as handed to a connector."""

    channel_type: ChannelType
    channel_id: UUID
    workspace_id: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    signature: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
