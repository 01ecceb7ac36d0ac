from __future__ import annotations

from typing import Dict, Optional

from app.channels.base import ChannelConnector
from app.channels.plugins.chat_widget import ChatWidgetConnector
from app.channels.plugins.email import EmailConnector
from app.channels.plugins.sms import SmsConnector
from app.channels.plugins.telegram import TelegramConnector
from app.channels.plugins.whatsapp import WhatsAppConnector
from app.config import Settings, get_settings
from app.constants.channels import CHANNEL_TYPE_CATALOGUE, ChannelType
from app.core.exceptions import UnknownChannelTypeError
from app.infra.logging_config import get_logger

logger = get_logger("registry")


class ConnectorRegistry:
    """Channel type to connector map. Populated at startup, read-only afterwards."""

    def __init__(self) -> None:
        self._connectors: Dict[ChannelType, ChannelConnector] = {}

    def register(self, connector: ChannelConnector) -> None:
        if connector.channel_type in self._connectors:
            raise ValueError(
                f"Connector already registered for channel type: {connector.channel_type}"
            )
        self._connectors[connector.channel_type] = connector

    def get(self, channel_type: str) -> Optional[ChannelConnector]:
        try:
            return self._connectors.get(ChannelType(channel_type))
        except ValueError:
            return None

    def require(self, channel_type: str) -> ChannelConnector:
        connector = self.get(channel_type)
        if connector is None:
            raise UnknownChannelTypeError(channel_type)
        return connector

    def list_connectors(self) -> list[ChannelConnector]:
        return list(self._connectors.values())

    def available_types(self) -> list[dict]:
        """Every known channel type, flagged with whether a connector serves it."""
        return [
            {
                "type": channel_type.value,
                **info,
                "available": channel_type in self._connectors,
            }
            for channel_type, info in CHANNEL_TYPE_CATALOGUE.items()
        ]

    async def start_all(self) -> None:
        for connector in self._connectors.values():
            await connector.start()
        logger.info(
            "Started connectors: %s",
            ", ".join(t.value for t in self._connectors),
        )

    async def stop_all(self) -> None:
        for connector in self._connectors.values():
            try:
                await connector.stop()
            except Exception:
                logger.exception("Connector %s failed to stop", connector.channel_type)


def build_connector_registry(settings: Optional[Settings] = None) -> ConnectorRegistry:
    settings = settings or get_settings()
    registry = ConnectorRegistry()
    registry.register(ChatWidgetConnector(settings))
    registry.register(EmailConnector(settings))
    registry.register(TelegramConnector(settings))
    registry.register(WhatsAppConnector(settings))
    registry.register(SmsConnector(settings))
    return registry
