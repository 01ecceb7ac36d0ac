"""WhatsApp Business channel over the Meta Cloud API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.channels.base import ChannelConnector, int_field, mapping_field, require_field
from app.constants.channels import ChannelType, ContentType
from app.core.exceptions import WebhookNormalizationError
from app.infra.logging_config import get_logger
from app.models.channel import Channel
from app.models.mixins import utcnow
from app.schemas.channel_messages import (
    Attachment,
    ChannelConnectionResult,
    IncomingMessage,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)
from app.utils.text import classify_file_type

from .config import WhatsAppConfig

logger = get_logger("channels.whatsapp")

GRAPH_API_BASE = "https://graph.facebook.com"

_MEDIA_CONTENT_TYPES = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "voice": ContentType.AUDIO,
    "document": ContentType.FILE,
    "sticker": ContentType.IMAGE,
}


class WhatsAppConnector(ChannelConnector):
    channel_type = ChannelType.WHATSAPP
    channel_name = "WhatsApp"
    config_model = WhatsAppConfig
    signature_header = "X-Hub-Signature-256"

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(settings)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GRAPH_API_BASE,
                timeout=self.settings.outbound_send_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def webhook_secret(self, channel: Channel) -> Optional[str]:
        secret = self.parse_config(channel).app_secret
        return secret.get_secret_value() if secret else None

    @staticmethod
    def _auth(config: WhatsAppConfig) -> dict[str, str]:
        return {"Authorization": f"Bearer {config.access_token.get_secret_value()}"}

    async def connect(self, channel: Channel) -> ChannelConnectionResult:
        config = self.parse_config(channel)
        try:
            response = await self._http().get(
                f"/{config.api_version}/{config.phone_number_id}",
                headers=self._auth(config),
                timeout=self.settings.connect_timeout_seconds,
            )
        except httpx.HTTPError as e:
            return ChannelConnectionResult(
                success=False, error=f"WhatsApp API unreachable: {e}"
            )
        if response.status_code != 200:
            return ChannelConnectionResult(
                success=False,
                error=f"WhatsApp API rejected credentials ({response.status_code})",
            )
        data = response.json()
        return ChannelConnectionResult(
            success=True,
            external_channel_id=data.get("display_phone_number") or config.phone_number_id,
            webhook_url=self.webhook_url(channel),
        )

    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        if not message.recipient:
            return SendMessageResult(success=False, error="Conversation has no phone number")
        config = self.parse_config(channel)
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": message.recipient,
            "type": "text",
            "text": {"body": message.content},
        }
        try:
            response = await self._http().post(
                f"/{config.api_version}/{config.phone_number_id}/messages",
                json=payload,
                headers=self._auth(config),
            )
        except httpx.HTTPError as e:
            logger.warning("WhatsApp send to %s failed: %s", message.recipient, e)
            return SendMessageResult(success=False, error=str(e), retryable=True)

        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.warning(
                "WhatsApp API error %s sending to %s: %s",
                response.status_code,
                message.recipient,
                response.text,
            )
            return SendMessageResult(
                success=False,
                error=f"WhatsApp API error {response.status_code}",
                retryable=retryable,
            )

        messages = response.json().get("messages") or [{}]
        return SendMessageResult(
            success=True,
            external_message_id=messages[0].get("id"),
            delivered_at=utcnow(),
        )

    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        value = self._change_value(payload.payload)
        messages = value.get("messages") or []
        if not messages:
            # delivery/read status callbacks
            return None

        raw = messages[0] if isinstance(messages, list) else None
        if not isinstance(raw, dict):
            raise WebhookNormalizationError("whatsapp webhook message must be an object")
        sender = str(require_field(raw, "from", self.channel_type))
        message_id = require_field(raw, "id", self.channel_type)
        msg_type = raw.get("type", "text")

        contacts = value.get("contacts") or [{}]
        contact = contacts[0] if isinstance(contacts, list) and isinstance(contacts[0], dict) else {}
        profile_name = mapping_field(contact, "profile", self.channel_type).get("name")

        content = ""
        content_type = ContentType.TEXT
        attachments: list[Attachment] = []
        if msg_type == "text":
            content = mapping_field(raw, "text", self.channel_type).get("body", "")
        elif msg_type in _MEDIA_CONTENT_TYPES:
            media = mapping_field(raw, msg_type, self.channel_type)
            media_id = require_field(media, "id", self.channel_type)
            mime_type = media.get("mime_type")
            content = media.get("caption", "")
            content_type = _MEDIA_CONTENT_TYPES[msg_type]
            attachments.append(
                Attachment(
                    file_name=media.get("filename") or f"{msg_type}-{media_id}",
                    file_type=classify_file_type(mime_type),
                    mime_type=mime_type,
                    url=f"whatsapp:media/{media_id}",
                )
            )
        elif msg_type == "location":
            location = mapping_field(raw, "location", self.channel_type)
            content = f"[Location: {location.get('latitude')}, {location.get('longitude')}]"
            content_type = ContentType.RICH
        else:
            content = f"[Unsupported message type: {msg_type}]"

        timestamp = payload.timestamp
        sent_at = int_field(raw, "timestamp", self.channel_type, default=0)
        if sent_at:
            try:
                timestamp = datetime.fromtimestamp(sent_at, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                raise WebhookNormalizationError(
                    f"whatsapp webhook timestamp {sent_at} is out of range"
                ) from None

        return IncomingMessage(
            external_id=str(message_id),
            channel_type=self.channel_type,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            contact_id=sender,
            contact_name=profile_name,
            contact_phone=sender,
            content=content,
            content_type=content_type,
            rich_content={"location": raw.get("location")} if msg_type == "location" else None,
            attachments=attachments,
            metadata={"whatsapp_type": msg_type},
            timestamp=timestamp,
        )

    @staticmethod
    def _change_value(body: dict[str, Any]) -> dict[str, Any]:
        try:
            value = body["entry"][0]["changes"][0]["value"]
        except (KeyError, IndexError, TypeError) as e:
            raise WebhookNormalizationError(
                "WhatsApp webhook is missing entry[0].changes[0].value"
            ) from e
        if not isinstance(value, dict):
            raise WebhookNormalizationError("WhatsApp webhook value must be an object")
        return value

    def contact_key(self, message: IncomingMessage) -> str:
        if not message.contact_phone:
            raise WebhookNormalizationError("whatsapp message has no sender phone")
        return message.contact_phone

    def verify_subscription(
        self, channel: Channel, mode: Optional[str], token: Optional[str], challenge: Optional[str]
    ) -> Optional[str]:
        """Meta's GET handshake: echo the challenge when the verify token matches."""
        config = self.parse_config(channel)
        if mode == "subscribe" and config.verify_token and token == config.verify_token:
            return challenge
        return None
