"""
ChannelService: the orchestrator between the HTTP layer, the connector
registry and the conversation store.

Channel lifecycle (create, update, delete), webhook routing to connectors,
outbound dispatch and conversation status changes all go through here.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.channels.base import ChannelConnector, format_validation_errors
from app.config import Settings, get_settings
from app.constants.channels import ChannelStatus, ChannelType, ConversationStatus, MessageStatus
from app.core.exceptions import (
    ChannelNotFoundError,
    ConfigValidationError,
    ConnectorConnectionError,
    ConversationNotFoundError,
    ConversationStateError,
    MessageNotFoundError,
    SendDeliveryError,
    WebhookNormalizationError,
)
from app.core.registry import ConnectorRegistry
from app.core.secrets import MASK, mask_config, open_config, seal_config
from app.infra.logging_config import get_logger
from app.models.channel import Channel
from app.models.conversation import Conversation
from app.models.conversation_message import ConversationMessage
from app.models.mixins import utcnow
from app.schemas.channel import ChannelCreate, ChannelRead, ChannelUpdate
from app.schemas.channel_messages import (
    ChannelStatusReport,
    IncomingMessage,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)
from app.services.conversation_service import ConversationService, IncomingResult

logger = get_logger("channel_service")


class ChannelService:
    def __init__(
        self,
        db: Session,
        registry: ConnectorRegistry,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.registry = registry
        self.settings = settings or get_settings()
        self.conversations = ConversationService(db, self.settings)

    # --- channels --------------------------------------------------------

    def _validated_config(
        self, connector: ChannelConnector, config: dict[str, Any]
    ) -> dict[str, Any]:
        result = connector.validate_config(config)
        if not result.valid:
            raise ConfigValidationError(result.errors or ["invalid configuration"])
        return seal_config(connector.config_model, config)

    async def _connect(self, connector: ChannelConnector, channel: Channel):
        try:
            return await asyncio.wait_for(
                connector.connect(channel),
                timeout=self.settings.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ConnectorConnectionError(
                f"Timed out connecting {channel.type} channel"
            ) from None
        except Exception as e:
            logger.exception("Connector %s raised during connect", channel.type)
            raise ConnectorConnectionError(f"Failed to connect channel: {e}") from e

    async def create_channel(self, data: ChannelCreate) -> Channel:
        """
        Validate, persist, then connect. A connect failure removes the row
        again so a channel that never connected is never left behind.
        """
        connector = self.registry.require(data.type)
        sealed = self._validated_config(connector, data.config)

        channel = Channel(
            workspace_id=data.workspace_id,
            type=connector.channel_type.value,
            name=data.name,
            config=sealed,
            status=ChannelStatus.ACTIVE.value,
        )
        self.db.add(channel)
        self.db.commit()
        self.db.refresh(channel)

        # A cancelled or failed connect may still have registered with the
        # provider, so every failure path disconnects before the row goes
        try:
            result = await self._connect(connector, channel)
        except ConnectorConnectionError:
            await self._safe_disconnect(connector, channel)
            self._discard(channel)
            raise
        if not result.success:
            await self._safe_disconnect(connector, channel)
            self._discard(channel)
            raise ConnectorConnectionError(result.error or "Failed to connect channel")

        try:
            channel.webhook_url = result.webhook_url
            channel.external_channel_id = result.external_channel_id
            channel.last_sync_at = utcnow()
            self.db.commit()
            self.db.refresh(channel)
        except Exception:
            self.db.rollback()
            await self._safe_disconnect(connector, channel)
            self._discard(channel)
            raise

        logger.info(
            "Created %s channel %s for workspace %s",
            channel.type,
            channel.id,
            channel.workspace_id,
        )
        return channel

    def _discard(self, channel: Channel) -> None:
        channel_id = channel.id
        self.db.rollback()
        self.db.query(Channel).filter(Channel.id == channel_id).delete(
            synchronize_session=False
        )
        self.db.commit()
        logger.info("Removed channel %s after failed connect", channel_id)

    async def _safe_disconnect(
        self, connector: Optional[ChannelConnector], channel: Channel
    ) -> None:
        if connector is None:
            return
        try:
            await connector.disconnect(channel)
        except Exception:
            logger.exception("Disconnect failed for channel %s", channel.id)

    def get_channel(
        self, channel_id: UUID, workspace_id: Optional[str] = None
    ) -> Channel:
        query = self.db.query(Channel).filter(Channel.id == channel_id)
        if workspace_id is not None:
            query = query.filter(Channel.workspace_id == workspace_id)
        channel = query.first()
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        return channel

    def get_workspace_channels(self, workspace_id: str) -> List[Channel]:
        return (
            self.db.query(Channel)
            .filter(Channel.workspace_id == workspace_id)
            .order_by(Channel.created_at)
            .all()
        )

    async def update_channel(
        self,
        channel_id: UUID,
        data: ChannelUpdate,
        workspace_id: Optional[str] = None,
    ) -> Channel:
        channel = self.get_channel(channel_id, workspace_id)
        connector = self.registry.require(channel.type)

        if data.name is not None:
            channel.name = data.name
        if data.status is not None:
            channel.status = data.status.value

        if data.config is not None:
            # Masked values echoed back by a client keep their stored secret
            merged = {
                key: (channel.config or {}).get(key) if value == MASK else value
                for key, value in data.config.items()
            }
            plain = open_config(connector.config_model, merged)
            result = connector.validate_config(plain)
            if not result.valid:
                self.db.rollback()
                raise ConfigValidationError(result.errors or ["invalid configuration"])
            previous = self._detached_copy(channel)
            channel.config = seal_config(connector.config_model, plain)

            try:
                connect_result = await self._connect(connector, channel)
            except ConnectorConnectionError:
                self.db.rollback()
                raise
            if not connect_result.success:
                self.db.rollback()
                raise ConnectorConnectionError(
                    connect_result.error or "Failed to reconnect channel"
                )
            if (
                previous.external_channel_id
                and previous.external_channel_id != connect_result.external_channel_id
            ):
                logger.info(
                    "Channel %s moved from %s to %s; releasing the old registration",
                    channel.id,
                    previous.external_channel_id,
                    connect_result.external_channel_id,
                )
                await self._safe_disconnect(connector, previous)
            channel.webhook_url = connect_result.webhook_url
            channel.external_channel_id = connect_result.external_channel_id
            channel.last_sync_at = utcnow()

        self.db.commit()
        self.db.refresh(channel)
        return channel

    @staticmethod
    def _detached_copy(channel: Channel) -> Channel:
        """A transient Channel carrying the stored config, never added to the session."""
        return Channel(
            id=channel.id,
            workspace_id=channel.workspace_id,
            type=channel.type,
            name=channel.name,
            config=dict(channel.config or {}),
            status=channel.status,
            webhook_url=channel.webhook_url,
            external_channel_id=channel.external_channel_id,
        )

    async def delete_channel(
        self, channel_id: UUID, workspace_id: Optional[str] = None
    ) -> None:
        """Disconnect (best effort), then hard delete with its conversations."""
        channel = self.get_channel(channel_id, workspace_id)
        connector = self.registry.get(channel.type)
        if connector is None:
            logger.warning(
                "No connector for %s; deleting channel %s without disconnect",
                channel.type,
                channel.id,
            )
        await self._safe_disconnect(connector, channel)
        self.db.delete(channel)
        self.db.commit()
        logger.info("Deleted channel %s", channel_id)

    async def get_channel_status(
        self, channel_id: UUID, workspace_id: Optional[str] = None
    ) -> ChannelStatusReport:
        channel = self.get_channel(channel_id, workspace_id)
        return await self.registry.require(channel.type).get_status(channel)

    async def ensure_default_chat_widget_channel(
        self, workspace_id: str, bot_id: str
    ) -> Channel:
        """Return the workspace's active chat widget channel, creating one if absent."""
        existing = (
            self.db.query(Channel)
            .filter(
                Channel.workspace_id == workspace_id,
                Channel.type == ChannelType.CHAT_WIDGET.value,
                Channel.status == ChannelStatus.ACTIVE.value,
            )
            .order_by(Channel.created_at)
            .first()
        )
        if existing is not None:
            return existing
        return await self.create_channel(
            ChannelCreate(
                workspace_id=workspace_id,
                type=ChannelType.CHAT_WIDGET,
                name="Website Chat",
                config={"bot_id": bot_id},
            )
        )

    def to_read(self, channel: Channel) -> ChannelRead:
        read = ChannelRead.model_validate(channel)
        connector = self.registry.get(channel.type)
        if connector is not None:
            read.config = mask_config(connector.config_model, channel.config or {})
        return read

    # --- inbound ---------------------------------------------------------

    def handle_webhook(
        self, channel_id: UUID, payload: WebhookPayload
    ) -> Optional[IncomingResult]:
        channel = self.get_channel(channel_id)
        connector = self.registry.require(channel.type)
        try:
            message = connector.handle_webhook(channel, payload)
        except ValidationError as e:
            raise WebhookNormalizationError(
                f"{channel.type} webhook payload has invalid fields: "
                + "; ".join(format_validation_errors(e))
            ) from e
        if message is None:
            logger.debug(
                "Ignoring %s event %s for channel %s",
                channel.type,
                payload.event_type,
                channel_id,
            )
            return None
        return connector.process_incoming(self.db, message)

    def process_incoming_message(self, message: IncomingMessage) -> IncomingResult:
        connector = self.registry.require(message.channel_type)
        return connector.process_incoming(self.db, message)

    # --- outbound --------------------------------------------------------

    async def send_message(
        self, channel_id: UUID, message: OutgoingMessage
    ) -> ConversationMessage:
        """
        Deliver a reply through the channel's connector and record it.

        Raises SendDeliveryError when the transport fails or times out; in
        that case nothing is written.
        """
        channel = self.get_channel(channel_id)
        conversation = self.conversations.get_conversation(message.conversation_id)
        if conversation is None or conversation.channel_id != channel.id:
            raise ConversationNotFoundError(message.conversation_id)
        if conversation.status == ConversationStatus.RESOLVED.value:
            raise ConversationStateError(
                f"Conversation {conversation.id} is resolved"
            )
        connector = self.registry.require(channel.type)

        metadata = dict(message.metadata)
        subject = (conversation.extra or {}).get("subject")
        if subject and "subject" not in metadata:
            metadata["subject"] = subject
        latest_inbound = self.conversations.message_service.get_latest_inbound(
            conversation.id
        )
        if latest_inbound is not None and latest_inbound.external_message_id:
            metadata.setdefault("in_reply_to", latest_inbound.external_message_id)
        outgoing = message.model_copy(
            update={
                "recipient": message.recipient or conversation.contact_key,
                "recipient_name": message.recipient_name or conversation.contact_name,
                "metadata": metadata,
            }
        )

        # No transaction or row lock is held while the transport runs
        self.db.expunge(channel)
        self.db.commit()

        result = await self._deliver(connector, channel, outgoing)
        if not result.success:
            logger.warning(
                "Delivery failed on channel %s for conversation %s: %s",
                channel.id,
                conversation.id,
                result.error,
            )
            raise SendDeliveryError(result.error, retryable=result.retryable)

        conversation = self.conversations.get_conversation(message.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(message.conversation_id)
        if conversation.status == ConversationStatus.RESOLVED.value:
            # Already delivered, so it stays in the transcript; status is untouched
            logger.warning(
                "Conversation %s was resolved while a reply was in flight; recording it anyway",
                conversation.id,
            )
        stored =self.conversations.record_outgoing(
            conversation,
            content=outgoing.content,
            content_type=outgoing.content_type.value,
            is_ai_generated=outgoing.is_ai_generated,
            sender_name=outgoing.sender_name,
            rich_content=outgoing.rich_content,
            attachments=[a.model_dump(mode="json") for a in outgoing.attachments],
            external_message_id=result.external_message_id,
            metadata=outgoing.metadata,
        )
        logger.info(
            "Sent message %s on channel %s (external id %s)",
            stored.id,
            channel.id,
            result.external_message_id,
        )
        return stored

    async def _deliver(
        self, connector: ChannelConnector, channel: Channel, message: OutgoingMessage
    ) -> SendMessageResult:
        try:
            return await asyncio.wait_for(
                connector.send_message(channel, message),
                timeout=self.settings.outbound_send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SendMessageResult(
                success=False,
                error=f"Timed out after {self.settings.outbound_send_timeout_seconds}s",
                retryable=True,
            )
        except Exception as e:
            logger.exception("Connector %s raised during send", channel.type)
            raise SendDeliveryError(str(e), retryable=False) from e

    # --- conversations ---------------------------------------------------

    def get_conversation(
        self, conversation_id: UUID, workspace_id: Optional[str] = None
    ) -> Conversation:
        conversation = self.conversations.get_conversation(conversation_id, workspace_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def get_conversation_with_messages(
        self, conversation_id: UUID, workspace_id: Optional[str] = None
    ) -> Tuple[Conversation, List[ConversationMessage]]:
        conversation = self.get_conversation(conversation_id, workspace_id)
        messages = self.conversations.message_service.get_messages(
            conversation.id, limit=1000
        )
        return conversation, messages

    def get_workspace_conversations(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        channel_id: Optional[UUID] = None,
        assigned_agent_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Conversation], int]:
        return self.conversations.get_workspace_conversations(
            workspace_id,
            status=status,
            channel_id=channel_id,
            assigned_agent_id=assigned_agent_id,
            limit=limit,
            offset=offset,
        )

    def assign_conversation(
        self,
        conversation_id: UUID,
        agent_id: Optional[str],
        workspace_id: Optional[str] = None,
    ) -> Conversation:
        conversation = self.get_conversation(conversation_id, workspace_id)
        return self.conversations.assign(conversation, agent_id)

    def resolve_conversation(
        self, conversation_id: UUID, workspace_id: Optional[str] = None
    ) -> Conversation:
        conversation = self.get_conversation(conversation_id, workspace_id)
        return self.conversations.resolve(conversation)

    def update_message_status(
        self, message_id: UUID, status: MessageStatus
    ) -> ConversationMessage:
        msg = self.conversations.message_service.update_status(message_id, status)
        if msg is None:
            raise MessageNotFoundError(message_id)
        return msg
