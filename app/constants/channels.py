"""Channel, conversation and message enumerations."""

from enum import StrEnum


class ChannelType(StrEnum):
    """Every external surface a channel can be created for."""

    CHAT_WIDGET = "chat_widget"
    EMAIL = "email"
    TELEGRAM = "telegram"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    API = "api"


class ChannelStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class ConversationStatus(StrEnum):
    NEW = "new"
    ASSIGNED = "assigned"
    BOT_HANDLED = "bot-handled"
    RESOLVED = "resolved"


class SenderType(StrEnum):
    USER = "user"
    BOT = "bot"
    AGENT = "agent"


class ContentType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    RICH = "rich"


class FileType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    OTHER = "other"


class MessageStatus(StrEnum):
    RECEIVED = "received"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Catalogue shown to the admin UI; types without a connector are flagged.
CHANNEL_TYPE_CATALOGUE: dict[ChannelType, dict[str, str]] = {
    ChannelType.CHAT_WIDGET: {
        "name": "Chat Widget",
        "description": "Website chat widget",
        "icon": "message-circle",
    },
    ChannelType.EMAIL: {
        "name": "Email",
        "description": "Email channel for support",
        "icon": "mail",
    },
    ChannelType.TELEGRAM: {
        "name": "Telegram",
        "description": "Telegram bot conversations",
        "icon": "send",
    },
    ChannelType.SMS: {
        "name": "SMS",
        "description": "SMS messaging via Twilio",
        "icon": "smartphone",
    },
    ChannelType.WHATSAPP: {
        "name": "WhatsApp",
        "description": "WhatsApp Business API",
        "icon": "phone",
    },
    ChannelType.FACEBOOK: {
        "name": "Facebook Messenger",
        "description": "Facebook Messenger integration",
        "icon": "facebook",
    },
    ChannelType.INSTAGRAM: {
        "name": "Instagram DM",
        "description": "Instagram Direct Messages",
        "icon": "instagram",
    },
    ChannelType.TWITTER: {
        "name": "Twitter/X",
        "description": "Twitter/X Direct Messages",
        "icon": "twitter",
    },
    ChannelType.API: {
        "name": "API",
        "description": "Custom API integration",
        "icon": "code",
    },
}
