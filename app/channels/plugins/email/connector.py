"""
Email channel.

Inbound mail arrives as an ``inbound_email`` webhook from the mail provider's
inbound-parse hook. Replies go out over SMTP with aiosmtplib; a channel with
no SMTP host (its own or the SMTP_* settings) uses a console transport that
only logs the mail, which is what local development runs on.
"""

from __future__ import annotations

from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid, parseaddr
from typing import Any, Optional

import aiosmtplib

from app.channels.base import ChannelConnector, require_field
from app.constants.channels import ChannelType
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
from app.utils.text import classify_file_type, html_to_text

from .config import EmailConfig

logger = get_logger("channels.email")

INBOUND_EMAIL_EVENT = "inbound_email"


@dataclass
class SmtpTransport:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    use_tls: bool


def reply_subject(subject: Optional[str]) -> Optional[str]:
    if not subject:
        return None
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


class EmailConnector(ChannelConnector):
    channel_type = ChannelType.EMAIL
    channel_name = "Email"
    config_model = EmailConfig

    def check_config(self, config: EmailConfig) -> list[str]:
        errors = []
        if "@" not in config.email_from:
            errors.append("email_from: must be an email address")
        if config.smtp_username and not (config.smtp_host or self.settings.smtp_host):
            errors.append("smtp_username: requires smtp_host")
        return errors

    async def connect(self, channel: Channel) -> ChannelConnectionResult:
        config = self.parse_config(channel)
        if not config.email_domain:
            return ChannelConnectionResult(
                success=False, error="Email domain not configured"
            )
        return ChannelConnectionResult(
            success=True,
            webhook_url=self.webhook_url(channel),
            external_channel_id=config.email_from,
        )

    # --- outbound --------------------------------------------------------

    def _transport(self, config: EmailConfig) -> Optional[SmtpTransport]:
        if config.smtp_host:
            return SmtpTransport(
                host=config.smtp_host,
                port=config.smtp_port or self.settings.smtp_port,
                username=config.smtp_username,
                password=(
                    config.smtp_password.get_secret_value()
                    if config.smtp_password
                    else None
                ),
                use_tls=(
                    config.smtp_use_tls
                    if config.smtp_use_tls is not None
                    else self.settings.smtp_use_tls
                ),
            )
        if self.settings.smtp_host:
            return SmtpTransport(
                host=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_username,
                password=self.settings.smtp_password,
                use_tls=self.settings.smtp_use_tls,
            )
        return None

    def build_email(
        self, config: EmailConfig, message: OutgoingMessage, message_id: str
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = (
            reply_subject(message.metadata.get("subject"))
            or f"Message from {config.email_from_name or config.email_domain}"
        )
        msg["From"] = formataddr(
            (message.sender_name or config.email_from_name or "", config.email_from)
        )
        msg["To"] = formataddr((message.recipient_name or "", message.recipient))
        msg["Message-ID"] = message_id
        in_reply_to = message.metadata.get("in_reply_to")
        if in_reply_to:
            msg["In-Reply-To"] = in_reply_to
            msg["References"] = in_reply_to
        msg.attach(MIMEText(message.content, "plain"))
        html = (message.rich_content or {}).get("html")
        if html:
            msg.attach(MIMEText(html, "html"))
        return msg

    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        config = self.parse_config(channel)
        if not message.recipient:
            return SendMessageResult(
                success=False, error="Conversation has no contact email address"
            )

        message_id = make_msgid(domain=config.email_domain)
        mail = self.build_email(config, message, message_id)
        transport = self._transport(config)

        if transport is None:
            logger.info(
                "Console email transport: from=%s to=%s subject=%s conversation=%s body=%s",
                mail["From"],
                mail["To"],
                mail["Subject"],
                message.conversation_id,
                message.content[:100],
            )
            return SendMessageResult(
                success=True, external_message_id=message_id, delivered_at=utcnow()
            )

        smtp = aiosmtplib.SMTP(
            hostname=transport.host,
            port=transport.port,
            timeout=self.settings.connect_timeout_seconds,
            start_tls=transport.use_tls,
        )
        try:
            await smtp.connect()
            if transport.username:
                await smtp.login(transport.username, transport.password or "")
            await smtp.send_message(mail)
            await smtp.quit()
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.warning("SMTP refused recipient %s: %s", message.recipient, e)
            return SendMessageResult(success=False, error=str(e), retryable=False)
        except aiosmtplib.SMTPResponseException as e:
            logger.warning("SMTP error %s from %s: %s", e.code, transport.host, e.message)
            return SendMessageResult(
                success=False, error=f"SMTP {e.code}: {e.message}", retryable=e.code < 500
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("SMTP transport failure via %s: %s", transport.host, e)
            return SendMessageResult(success=False, error=str(e), retryable=True)
        finally:
            if smtp.is_connected:
                smtp.close()

        logger.info("Sent email %s to %s", message_id, message.recipient)
        return SendMessageResult(
            success=True, external_message_id=message_id, delivered_at=utcnow()
        )

    # --- inbound ---------------------------------------------------------

    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        if payload.event_type != INBOUND_EMAIL_EVENT:
            return None

        body = payload.payload
        sender = require_field(body, "from", self.channel_type)
        name, address = self._parse_sender(sender)
        if not address or "@" not in address:
            raise WebhookNormalizationError("email webhook has no sender address")

        content = body.get("textBody") or html_to_text(body.get("htmlBody"))
        subject = body.get("subject")
        message_id = body.get("messageId")

        return IncomingMessage(
            external_id=str(message_id) if message_id else None,
            channel_type=self.channel_type,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            contact_id=address.lower(),
            contact_name=name,
            contact_email=address,
            content=content,
            attachments=[
                self._attachment(att) for att in self._attachment_list(body)
            ],
            metadata={"subject": subject, "message_id": message_id},
            timestamp=payload.timestamp,
        )

    @staticmethod
    def _parse_sender(sender: Any) -> tuple[Optional[str], Optional[str]]:
        if isinstance(sender, dict):
            return sender.get("name") or None, sender.get("email")
        name, address = parseaddr(str(sender))
        return name or None, address or None

    @staticmethod
    def _attachment_list(body: dict[str, Any]) -> list[Any]:
        attachments = body.get("attachments") or []
        if not isinstance(attachments, list):
            raise WebhookNormalizationError("email webhook 'attachments' must be a list")
        return attachments

    @staticmethod
    def _attachment(raw: Any) -> Attachment:
        if not isinstance(raw, dict):
            raise WebhookNormalizationError("email attachment must be an object")
        url = raw.get("url")
        file_name = raw.get("filename") or raw.get("name")
        if not url or not file_name:
            raise WebhookNormalizationError("email attachment is missing name or url")
        mime_type = raw.get("contentType")
        return Attachment(
            file_name=file_name,
            file_type=classify_file_type(mime_type),
            mime_type=mime_type,
            file_size=raw.get("size"),
            url=url,
        )

    def contact_key(self, message: IncomingMessage) -> str:
        if not message.contact_email:
            raise WebhookNormalizationError("email message has no sender address")
        return message.contact_email.lower()
