"""Telegram channel using python-telegram-bot."""

from __future__ import annotations

import asyncio
import hmac
import re
from datetime import timezone
from typing import Mapping, Optional

from telegram import Bot, Update
from telegram.error import BadRequest, Forbidden, InvalidToken, TelegramError

from app.channels.base import ChannelConnector, header_value
from app.constants.channels import ChannelType, ContentType, FileType
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

from .config import TelegramConfig

logger = get_logger("channels.telegram")

TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


class TelegramConnector(ChannelConnector):
    channel_type = ChannelType.TELEGRAM
    channel_name = "Telegram"
    config_model = TelegramConfig
    signature_header = "X-Telegram-Bot-Api-Secret-Token"

    def __init__(self, settings=None) -> None:
        super().__init__(settings)
        self._bots: dict[str, Bot] = {}

    def _get_bot(self, config: TelegramConfig) -> Bot:
        token = config.bot_token.get_secret_value()
        if token not in self._bots:
            self._bots[token] = Bot(token=token)
        return self._bots[token]

    async def stop(self) -> None:
        for bot in self._bots.values():
            try:
                await bot.shutdown()
            except TelegramError as e:
                logger.warning("Telegram bot shutdown failed: %s", e)
        self._bots.clear()

    def check_config(self, config: TelegramConfig) -> list[str]:
        if not TOKEN_RE.match(config.bot_token.get_secret_value()):
            return ["bot_token: not a Telegram bot token"]
        return []

    async def connect(self, channel: Channel) -> ChannelConnectionResult:
        config = self.parse_config(channel)
        bot = self._get_bot(config)
        try:
            me = await asyncio.wait_for(
                bot.get_me(), timeout=self.settings.connect_timeout_seconds
            )
        except (InvalidToken, Forbidden) as e:
            return ChannelConnectionResult(
                success=False, error=f"Telegram rejected the bot token: {e}"
            )
        except (TelegramError, asyncio.TimeoutError) as e:
            return ChannelConnectionResult(
                success=False, error=f"Telegram unreachable: {e}"
            )

        webhook_url = self.webhook_url(channel)
        if self.settings.public_base_url:
            secret = config.webhook_secret
            try:
                await bot.set_webhook(
                    url=webhook_url,
                    secret_token=secret.get_secret_value() if secret else None,
                )
            except TelegramError as e:
                return ChannelConnectionResult(
                    success=False, error=f"Telegram setWebhook failed: {e}"
                )
        else:
            logger.info(
                "PUBLIC_BASE_URL not set; Telegram webhook for channel %s not registered",
                channel.id,
            )

        return ChannelConnectionResult(
            success=True, external_channel_id=str(me.id), webhook_url=webhook_url
        )

    async def disconnect(self, channel: Channel) -> None:
        if not self.settings.public_base_url:
            return
        try:
            bot = self._get_bot(self.parse_config(channel))
            await bot.delete_webhook()
        except (TelegramError, ValueError) as e:
            logger.warning("Telegram deleteWebhook failed for channel %s: %s", channel.id, e)

    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        if not message.recipient:
            return SendMessageResult(success=False, error="Conversation has no chat id")
        bot = self._get_bot(self.parse_config(channel))
        try:
            sent = await bot.send_message(chat_id=message.recipient, text=message.content)
        except (BadRequest, Forbidden) as e:
            logger.warning("Telegram refused message to %s: %s", message.recipient, e)
            return SendMessageResult(success=False, error=str(e), retryable=False)
        except TelegramError as e:
            logger.warning("Telegram send failed to %s: %s", message.recipient, e)
            return SendMessageResult(success=False, error=str(e), retryable=True)
        return SendMessageResult(
            success=True,
            external_message_id=f"{sent.chat_id}:{sent.message_id}",
            delivered_at=utcnow(),
        )

    def verify_webhook(
        self, channel: Channel, body: bytes, headers: Mapping[str, str]
    ) -> bool:
        """Telegram echoes the webhook secret verbatim instead of signing the body."""
        expected = self.webhook_secret(channel)
        if not expected:
            return True
        actual = header_value(headers, self.signature_header) or ""
        return hmac.compare_digest(expected, actual)

    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        try:
            update = Update.de_json(payload.payload, None)
        except (KeyError, TypeError, ValueError) as e:
            raise WebhookNormalizationError(f"Invalid Telegram update: {e}") from e
        if update is None or update.message is None:
            return None

        msg = update.message
        from_user = msg.from_user
        chat_id = str(msg.chat_id)
        attachments: list[Attachment] = []
        content_type = ContentType.TEXT
        if msg.photo:
            largest = msg.photo[-1]
            attachments.append(
                Attachment(
                    file_name=f"{largest.file_unique_id}.jpg",
                    file_type=FileType.IMAGE,
                    mime_type="image/jpeg",
                    file_size=largest.file_size,
                    url=f"telegram:file/{largest.file_id}",
                )
            )
            content_type = ContentType.IMAGE
        if msg.document:
            attachments.append(
                Attachment(
                    file_name=msg.document.file_name or msg.document.file_unique_id,
                    file_type=FileType.DOCUMENT,
                    mime_type=msg.document.mime_type,
                    file_size=msg.document.file_size,
                    url=f"telegram:file/{msg.document.file_id}",
                )
            )
            content_type = ContentType.FILE
        if msg.voice:
            attachments.append(
                Attachment(
                    file_name=f"{msg.voice.file_unique_id}.ogg",
                    file_type=FileType.AUDIO,
                    mime_type=msg.voice.mime_type,
                    file_size=msg.voice.file_size,
                    url=f"telegram:file/{msg.voice.file_id}",
                )
            )
            content_type = ContentType.AUDIO

        timestamp = msg.date
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return IncomingMessage(
            external_id=f"{chat_id}:{msg.message_id}",
            channel_type=self.channel_type,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            contact_id=chat_id,
            contact_name=from_user.full_name if from_user else None,
            content=msg.text or msg.caption or "",
            content_type=content_type,
            attachments=attachments,
            metadata={
                "chat_id": chat_id,
                "username": from_user.username if from_user else None,
                "locale": from_user.language_code if from_user else None,
            },
            timestamp=timestamp,
        )

    def contact_key(self, message: IncomingMessage) -> str:
        if not message.contact_id:
            raise WebhookNormalizationError("telegram message has no chat id")
        return message.contact_id
