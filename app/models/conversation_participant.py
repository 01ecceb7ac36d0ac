"""ConversationParticipant model: the external contact behind a conversation."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin


class ConversationParticipant(Base, TimestampMixin):
    __tablename__ = "conversation_participants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workspace_id = Column(String(64), nullable=False)
    participant_type = Column(String(16), nullable=False, default="customer")
    external_id = Column(String(256), nullable=False)
    name = Column(String(256), nullable=True)
    email = Column(String(256), nullable=True)
    phone = Column(String(64), nullable=True)
    avatar_url = Column(String(1024), nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
