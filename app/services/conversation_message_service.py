"""
ConversationMessage persistence.

Messages are append-only: only `status` changes after insert. Writes here
flush but do not commit; the caller owns the transaction so the message and
the conversation counters land together.
"""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.constants.channels import MessageStatus, SenderType
from app.models.conversation import Conversation
from app.models.conversation_message import ConversationMessage
from app.models.mixins import utcnow


class ConversationMessageService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def add_message(
        self,
        conversation: Conversation,
        *,
        sender_type: SenderType,
        content: str,
        content_type: str,
        status: MessageStatus,
        sender_name: Optional[str] = None,
        rich_content: Optional[dict[str, Any]] = None,
        attachments: Optional[list[dict[str, Any]]] = None,
        is_ai_generated: bool = False,
        external_message_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationMessage:
        msg = ConversationMessage(
            conversation_id=conversation.id,
            channel_id=conversation.channel_id,
            sender_type=sender_type.value,
            sender_name=sender_name,
            content=content,
            content_type=content_type,
            rich_content=rich_content,
            attachments=attachments or [],
            is_ai_generated=is_ai_generated,
            external_message_id=external_message_id,
            status=status.value,
            extra=metadata or {},
            created_at=utcnow(),
        )
        self.db.add(msg)
        self.db.flush()
        return msg

    def get_message(self, message_id: UUID) -> Optional[ConversationMessage]:
        return (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.id == message_id)
            .first()
        )

    def get_by_external_id(
        self, channel_id: UUID, external_message_id: str
    ) -> Optional[ConversationMessage]:
        """Look up a message by its provider id; the idempotency check for redelivery."""
        return (
            self.db.query(ConversationMessage)
            .filter(
                ConversationMessage.channel_id == channel_id,
                ConversationMessage.external_message_id == external_message_id,
            )
            .first()
        )

    def get_messages(
        self, conversation_id: UUID, limit: int = 100, offset: int = 0
    ) -> List[ConversationMessage]:
        return (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.created_at)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def messages_query(self, conversation_id: UUID):
        return (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.created_at)
        )

    def get_latest_inbound(self, conversation_id: UUID) -> Optional[ConversationMessage]:
        return (
            self.db.query(ConversationMessage)
            .filter(
                ConversationMessage.conversation_id == conversation_id,
                ConversationMessage.sender_type == SenderType.USER.value,
            )
            .order_by(ConversationMessage.created_at.desc())
            .first()
        )

    def get_message_count(self, conversation_id: UUID) -> int:
        return (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .count()
        )

    def update_status(
        self, message_id: UUID, status: MessageStatus
    ) -> Optional[ConversationMessage]:
        """Update delivery status; the only mutation allowed on a stored message."""
        msg = self.get_message(message_id)
        if msg is None:
            return None
        msg.status = MessageStatus(status).value
        self.db.commit()
        self.db.refresh(msg)
        return msg
