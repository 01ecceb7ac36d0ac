"""SMS channel (Twilio). Inbound normalization only; outbound is not wired yet."""

from __future__ import annotations

from typing import Optional

from app.channels.base import ChannelConnector, int_field, require_field
from app.constants.channels import ChannelType, ContentType
from app.core.exceptions import WebhookNormalizationError
from app.models.channel import Channel
from app.schemas.channel_messages import (
    Attachment,
    ChannelConnectionResult,
    IncomingMessage,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)
from app.utils.text import classify_file_type

from .config import SmsConfig

MESSAGE_EVENT = "message"


class SmsConnector(ChannelConnector):
    channel_type = ChannelType.SMS
    channel_name = "SMS"
    config_model = SmsConfig

    async def connect(self, channel: Channel) -> ChannelConnectionResult:
        config = self.parse_config(channel)
        return ChannelConnectionResult(
            success=True,
            external_channel_id=config.from_number,
            webhook_url=self.webhook_url(channel),
        )

    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        return SendMessageResult(
            success=False,
            error="SMS delivery is not available yet",
            retryable=False,
        )

    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        if payload.event_type != MESSAGE_EVENT:
            return None

        body = payload.payload
        sender = str(require_field(body, "From", self.channel_type))
        message_sid = str(require_field(body, "MessageSid", self.channel_type))

        attachments = []
        num_media = int_field(body, "NumMedia", self.channel_type)
        for index in range(num_media):
            url = body.get(f"MediaUrl{index}")
            if not url:
                continue
            mime_type = body.get(f"MediaContentType{index}")
            attachments.append(
                Attachment(
                    file_name=f"{message_sid}-{index}",
                    file_type=classify_file_type(mime_type),
                    mime_type=mime_type,
                    url=url,
                )
            )

        return IncomingMessage(
            external_id=message_sid,
            channel_type=self.channel_type,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            contact_id=sender,
            contact_phone=sender,
            content=body.get("Body") or "",
            content_type=ContentType.IMAGE if attachments and not body.get("Body") else ContentType.TEXT,
            attachments=attachments,
            metadata={"to": body.get("To")},
            timestamp=payload.timestamp,
        )

    def contact_key(self, message: IncomingMessage) -> str:
        if not message.contact_phone:
            raise WebhookNormalizationError("sms message has no sender phone")
        return message.contact_phone
