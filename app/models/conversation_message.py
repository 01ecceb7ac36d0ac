"""ConversationMessage model: one row per inbound or outbound message."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.channels import ContentType, MessageStatus
from app.db import Base
from app.models.channel import JSONType
from app.models.mixins import utcnow


class ConversationMessage(Base):
    """
    Append-only message row. Only `status` changes after insert.

    `channel_id` is denormalized from the conversation so the provider message
    id can be made unique per channel; that constraint is the idempotency key
    for webhook redelivery.
    """

    __tablename__ = "conversation_messages"

    __table_args__ = (
        UniqueConstraint(
            "channel_id",
            "external_message_id",
            name="uq_conversation_messages_channel_external_id",
        ),
        Index(
            "ix_conversation_messages_conversation_created",
            "conversation_id",
            "created_at",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    channel_id = Column(Uuid(as_uuid=True), nullable=False)
    sender_type = Column(String(16), nullable=False)  # 'user' | 'bot' | 'agent'
    sender_name = Column(String(256), nullable=True)
    content = Column(Text, nullable=False, default="")
    content_type = Column(String(16), nullable=False, default=ContentType.TEXT.value)
    rich_content = Column(JSONType, nullable=True)
    attachments = Column(JSONType, nullable=True)
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    external_message_id = Column(String(256), nullable=True)
    status = Column(String(16), nullable=False, default=MessageStatus.RECEIVED.value)
    extra = Column(
        "metadata", JSONType, nullable=True
    )  # DB column "metadata"; avoid shadowing Base.metadata
    created_at = Column(DateTime, default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    @property
    def message_metadata(self) -> dict | None:
        """Expose DB column 'metadata' for serialization."""
        return self.extra
