"""Conversation model: a thread between a workspace and one external contact."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.channels import ConversationStatus
from app.db import Base
from app.models.channel import JSONType
from app.models.mixins import TimestampMixin, utcnow


class Conversation(Base, TimestampMixin):
    """
    One thread on one channel.

    `thread_key` holds the contact key while this row is the contact's live
    conversation and is cleared once the conversation is resolved or goes
    idle. The unique (channel_id, thread_key) pair is what makes
    find-or-create safe under concurrent webhook deliveries.
    """

    __tablename__ = "conversations"

    __table_args__ = (
        UniqueConstraint(
            "channel_id", "thread_key", name="uq_conversations_channel_thread_key"
        ),
        Index(
            "ix_conversations_workspace_last_message",
            "workspace_id",
            "last_message_at",
        ),
        Index("ix_conversations_channel_contact", "channel_id", "contact_key"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(String(64), nullable=False)
    channel_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = Column(String(16), nullable=False, default=ConversationStatus.NEW.value)
    assigned_agent_id = Column(String(64), nullable=True)
    is_handled_by_bot = Column(Boolean, nullable=False, default=True)
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime, nullable=False, default=utcnow)
    first_response_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    contact_key = Column(String(256), nullable=False)
    thread_key = Column(String(256), nullable=True)
    contact_name = Column(String(256), nullable=True)
    contact_email = Column(String(256), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    extra = Column("metadata", JSONType, nullable=True, default=dict)

    channel = relationship("Channel", back_populates="conversations")
    messages = relationship(
        "ConversationMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConversationMessage.created_at",
    )
    participants = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
