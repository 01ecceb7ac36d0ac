"""
Channel connector interface.

A connector encapsulates everything specific to one external surface: config
validation, connect/disconnect with the provider, webhook signature checks,
normalization of provider payloads into IncomingMessage and delivery of
OutgoingMessage. New channel types implement this interface and are added to
the registry built in app.core.registry.
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.constants.channels import ChannelStatus, ChannelType
from app.core.exceptions import WebhookNormalizationError
from app.core.secrets import open_config
from app.infra.logging_config import get_logger
from app.models.channel import Channel
from app.schemas.channel_messages import (
    ChannelConnectionResult,
    ChannelStatusReport,
    ConfigValidationResult,
    IncomingMessage,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)
from app.services.conversation_service import ConversationService, IncomingResult

logger = get_logger("channels")


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works on plain dicts."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def require_field(payload: Mapping[str, Any], key: str, channel_type: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise WebhookNormalizationError(
            f"{channel_type} webhook payload is missing '{key}'"
        )
    return value


def mapping_field(payload: Mapping[str, Any], key: str, channel_type: str) -> dict:
    """An optional nested object; absent means empty, anything but an object is rejected."""
    value = payload.get(key)
    if value is None or value == "":
        return {}
    if not isinstance(value, Mapping):
        raise WebhookNormalizationError(
            f"{channel_type} webhook field '{key}' must be an object"
        )
    return dict(value)


def int_field(payload: Mapping[str, Any], key: str, channel_type: str, default: int = 0) -> int:
    value = payload.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WebhookNormalizationError(
            f"{channel_type} webhook field '{key}' must be an integer, got {value!r}"
        ) from None


def format_validation_errors(error: ValidationError) -> list[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        messages.append(f"{location}: {err['msg']}" if location else err["msg"])
    return messages


class ChannelConnector(ABC):
    """Contract for channel connectors. One instance serves every channel of its type."""

    channel_type: ChannelType
    channel_name: str
    config_model: Type[BaseModel]
    signature_header: str = "X-Webhook-Signature"

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    # --- config ----------------------------------------------------------

    def validate_config(self, config: Mapping[str, Any]) -> ConfigValidationResult:
        """Validate a plain config dict. Pure; never touches the network."""
        try:
            parsed = self.config_model.model_validate(dict(config or {}))
        except ValidationError as e:
            return ConfigValidationResult(
                valid=False, errors=format_validation_errors(e)
            )
        errors = self.check_config(parsed)
        if errors:
            return ConfigValidationResult(valid=False, errors=errors)
        return ConfigValidationResult(valid=True)

    def check_config(self, config: BaseModel) -> list[str]:
        """Cross-field checks that the config model cannot express. Override as needed."""
        return []

    def parse_config(self, channel: Channel) -> BaseModel:
        """Return the channel's config as this connector's typed model, secrets decrypted."""
        return self.config_model.model_validate(
            open_config(self.config_model, channel.config or {})
        )

    # --- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        """Called once when the application starts."""

    async def stop(self) -> None:
        """Called once when the application shuts down."""

    async def connect(self, channel: Channel) -> ChannelConnectionResult:
        """Establish the channel with its provider. Must be idempotent."""
        return ChannelConnectionResult(
            success=True, webhook_url=self.webhook_url(channel)
        )

    async def disconnect(self, channel: Channel) -> None:
        """Tear down provider-side state. Best effort; must not raise."""

    async def get_status(self, channel: Channel) -> ChannelStatusReport:
        connected = channel.status == ChannelStatus.ACTIVE.value
        return ChannelStatusReport(
            connected=connected,
            last_sync=channel.last_sync_at,
            error=None if connected else f"Channel is {channel.status}",
        )

    def webhook_path(self, channel: Channel) -> str:
        return f"/api/channels/{self.channel_type.value}/{channel.id}/webhook"

    def webhook_url(self, channel: Channel) -> str:
        path = self.webhook_path(channel)
        base = self.settings.public_base_url
        return f"{base.rstrip('/')}{path}" if base else path

    # --- messaging -------------------------------------------------------

    @abstractmethod
    async def send_message(
        self, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        """Deliver a message through the provider. Never writes to the store."""
        ...

    @abstractmethod
    def handle_webhook(
        self, channel: Channel, payload: WebhookPayload
    ) -> Optional[IncomingMessage]:
        """
        Normalize a provider event. Return None for events that carry no
        message; raise WebhookNormalizationError for malformed message events.
        """
        ...

    @abstractmethod
    def contact_key(self, message: IncomingMessage) -> str:
        """Per-channel identity of the external contact."""
        ...

    def process_incoming(self, db: Session, message: IncomingMessage) -> IncomingResult:
        """Materialize a normalized message into conversation and message rows."""
        return ConversationService(db, self.settings).record_incoming(
            message, self.contact_key(message)
        )

    # --- webhook security ------------------------------------------------

    def webhook_secret(self, channel: Channel) -> Optional[str]:
        secret = getattr(self.parse_config(channel), "webhook_secret", None)
        return secret.get_secret_value() if secret else None

    def verify_webhook(
        self, channel: Channel, body: bytes, headers: Mapping[str, str]
    ) -> bool:
        """
        HMAC-SHA256 of the raw body with the channel's webhook secret, hex
        digest in `signature_header` (an optional ``sha256=`` prefix is
        accepted). Channels without a secret are not verified.
        """
        secret = self.webhook_secret(channel)
        if not secret:
            return True
        provided = header_value(headers, self.signature_header)
        if not provided:
            return False
        if provided.startswith("sha256="):
            provided = provided[len("sha256=") :]
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, provided)
