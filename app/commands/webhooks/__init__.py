from .channel_webhook_command import ChannelWebhookCommand

__all__ = ["ChannelWebhookCommand"]
