"""Domain exceptions raised by connectors and services.

Each exception carries the HTTP status the API answers with; a single handler
registered in ``create_app`` turns them into JSON responses.
"""

from __future__ import annotations

from typing import Optional


class ChannelError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ConfigValidationError(ChannelError):
    status_code = 422

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Invalid channel configuration: " + "; ".join(errors))
        self.errors = errors

    def to_dict(self) -> dict:
        return {"detail": self.message, "errors": self.errors}


class UnknownChannelTypeError(ChannelError):
    status_code = 400

    def __init__(self, channel_type: str) -> None:
        super().__init__(f"No connector registered for channel type: {channel_type}")
        self.channel_type = channel_type


class ChannelNotFoundError(ChannelError):
    status_code = 404

    def __init__(self, channel_id) -> None:
        super().__init__(f"Channel not found: {channel_id}")


class ConversationNotFoundError(ChannelError):
    status_code = 404

    def __init__(self, conversation_id) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")


class MessageNotFoundError(ChannelError):
    status_code = 404

    def __init__(self, message_id) -> None:
        super().__init__(f"Message not found: {message_id}")


class ConnectorConnectionError(ChannelError):
    status_code = 502


class WebhookNormalizationError(ChannelError):
    """A message event was missing fields required to build an IncomingMessage."""

    status_code = 400


class WebhookSignatureError(ChannelError):
    status_code = 403

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(message)


class SendDeliveryError(ChannelError):
    """The transport reported failure; nothing was persisted."""

    def __init__(self, error: Optional[str], retryable: bool = False) -> None:
        super().__init__(error or "Message delivery failed")
        self.retryable = retryable
        self.status_code = 503 if retryable else 502

    def to_dict(self) -> dict:
        return {"detail": self.message, "retryable": self.retryable}


class ConversationStateError(ChannelError):
    status_code = 409
