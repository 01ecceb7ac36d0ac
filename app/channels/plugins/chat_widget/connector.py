"""Embedded website chat widget."""

from __future__ import annotations

import uuid
from typing import Optional

from app.channels.base import ChannelConnector, mapping_field, require_field
from app.constants.channels import ChannelType
from app.core.exceptions import WebhookNormalizationError
from app.models.channel import Channel
from app.models.mixins import utcnow
from app.schemas.channel_messages import (
    IncomingMessage,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)

from .config import ChatWidgetConfig

MESSAGE_EVENT = "message"


class ChatWidgetConnector(ChannelConnector):
    channel_type = ChannelType.CHAT_WIDGET
    channel_name = "Chat Widget"
    config_model = ChatWidgetConfig

    def webhook_path(self, channel: Channel) -> str:
        return f"/api/widget/chat/{channel.id}"

    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        # The widget polls the conversation; persisting the reply is delivery.
        return SendMessageResult(
            success=True,
            external_message_id=f"widget:{uuid.uuid4()}",
            delivered_at=utcnow(),
        )

    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        if payload.event_type != MESSAGE_EVENT:
            return None

        body = payload.payload
        session_id = str(require_field(body, "sessionId", self.channel_type))
        content = require_field(body, "message", self.channel_type)
        contact = mapping_field(body, "contactInfo", self.channel_type)
        message_id = body.get("messageId")

        return IncomingMessage(
            external_id=str(message_id) if message_id else None,
            channel_type=self.channel_type,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            contact_id=session_id,
            contact_name=contact.get("name"),
            contact_email=contact.get("email"),
            contact_phone=contact.get("phone"),
            content=str(content),
            metadata={"session_id": session_id},
            timestamp=payload.timestamp,
        )

    def contact_key(self, message: IncomingMessage) -> str:
        if not message.contact_id:
            raise WebhookNormalizationError("chat_widget message has no session id")
        return message.contact_id
