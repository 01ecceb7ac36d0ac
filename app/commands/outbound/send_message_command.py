"""
Command to send a reply into a conversation through its channel.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from app.core.registry import ConnectorRegistry
from app.models.conversation_message import ConversationMessage
from app.schemas.channel_messages import OutgoingMessage
from app.schemas.conversation import SendMessageRequest
from app.services.channel_service import ChannelService


class SendMessageCommand:
    def __init__(self, db: Session, registry: ConnectorRegistry) -> None:
        self.db = db
        self.channel_service = ChannelService(db, registry)

    async def execute(
        self, conversation_id: UUID, body: SendMessageRequest, workspace_id: str | None = None
    ) -> ConversationMessage:
        """
        Resolve the conversation's channel and dispatch.

        Raises:
            ConversationNotFoundError: 404.
            ConversationStateError: 409 when the conversation is resolved.
            SendDeliveryError: 502, or 503 when the failure is retryable.
        """
        conversation = self.channel_service.get_conversation(conversation_id, workspace_id)
        outgoing = OutgoingMessage(
            conversation_id=conversation.id,
            **body.model_dump(),
        )
        return await self.channel_service.send_message(conversation.channel_id, outgoing)
